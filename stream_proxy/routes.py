from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from stream_proxy.gate import require_stream_access
from stream_proxy.models import HealthReport

router = APIRouter()


@router.get("/stream")
async def stream(request: Request, path: str = Depends(require_stream_access)) -> Response:
    """Relay ``path`` from the upstream once the caller's credentials check out."""
    return await request.app.state.forwarding_engine.forward(path)


@router.get("/health", response_model=HealthReport)
async def health(request: Request) -> HealthReport:
    return request.app.state.health_reporter.report()
