from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from stream_proxy.bootstrap import ProxyRuntime
from stream_proxy.credentials.cache import CredentialCache
from stream_proxy.forwarding.engine import ForwardingEngine, UpstreamClientSettings
from stream_proxy.health import HealthReporter
from stream_proxy.routes import router
from stream_proxy.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that drops the per-chunk ASGI body spans a long stream produces.
    A single relayed stream would otherwise emit one span per 64 KiB piece.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=(OTLP_HEADERS.split(",") if OTLP_HEADERS else None),
    )
    trace.get_tracer_provider().add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )

app_info = Info("stream_proxy_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})


def create_app(
    runtime: ProxyRuntime,
    settings: Optional[UpstreamClientSettings] = None,
    upstream_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Wire the credential cache, forwarding engine and health reporter for ``runtime``
    into a FastAPI application.
    """
    credential_cache = CredentialCache.from_config(
        runtime.config_path, runtime.config, runtime.mtime_ns
    )
    forwarding_engine = ForwardingEngine(
        runtime.stream_host, settings=settings, client=upstream_client
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await forwarding_engine.aclose()

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.state.credential_cache = credential_cache
    app.state.forwarding_engine = forwarding_engine
    app.state.health_reporter = HealthReporter(
        credential_cache, runtime.listen, runtime.stream_host
    )

    Instrumentator().instrument(app).expose(app)
    FastAPIInstrumentor.instrument_app(app)

    app.include_router(router)
    return app
