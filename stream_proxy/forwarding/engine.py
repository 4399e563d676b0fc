"""
Forwarding of validated stream requests to the upstream media server.

Features:
- One shared, bounded httpx connection pool for every request
- HTTP/2 negotiated with the upstream when it offers it
- Proxy taken from HTTP(S)_PROXY/ALL_PROXY unless NO_PROXY covers the upstream
- Single attempt per request; transport failures become 502 immediately
- Error bodies truncated before they reach the client
- Success bodies relayed in bounded pieces, never buffered whole
- Upstream response closed when the relay ends, whatever ends it
"""

import asyncio
import logging
import socket
import urllib.request
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.types import Receive, Scope, Send

from stream_proxy.errors import UpstreamConnectError
from stream_proxy.utils.exception_logging import (
    format_exception_message,
    is_client_disconnect,
    log_exception_with_details,
)

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

STREAM_MEDIA_TYPE = "video/mp2t"
UPSTREAM_HEADERS = {"Accept": "*/*", "Connection": "keep-alive"}


@dataclass(frozen=True)
class UpstreamClientSettings:
    connect_timeout: float = 5.0
    tls_handshake_timeout: float = 4.0
    tcp_keepalive_interval: int = 60
    response_header_timeout: float = 5.0
    max_idle_connections: int = 512
    max_idle_connections_per_host: int = 256
    idle_connection_timeout: float = 90.0
    http2: bool = True
    transfer_buffer_size: int = 64 * 1024
    error_body_limit: int = 4096
    trust_env: bool = True

    def connect_budget(self, url: str) -> float:
        if httpx.URL(url).scheme == "https":
            return self.connect_timeout + self.tls_handshake_timeout
        return self.connect_timeout

    def header_deadline(self, url: str) -> float:
        """Time allowed from starting the request until upstream response headers arrive."""
        return self.connect_budget(url) + self.response_header_timeout

    def timeout(self, url: str) -> httpx.Timeout:
        # No read/write/pool timeout: live streams may idle between segments.
        return httpx.Timeout(None, connect=self.connect_budget(url))

    def limits(self) -> httpx.Limits:
        # All traffic goes to one upstream host, so the per-host idle cap is the effective one.
        return httpx.Limits(
            max_connections=None,
            max_keepalive_connections=min(
                self.max_idle_connections, self.max_idle_connections_per_host
            ),
            keepalive_expiry=self.idle_connection_timeout,
        )

    def socket_options(self) -> list:
        options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
        if hasattr(socket, "TCP_KEEPIDLE"):
            options.append(
                (socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, self.tcp_keepalive_interval)
            )
        if hasattr(socket, "TCP_KEEPINTVL"):
            options.append(
                (socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, self.tcp_keepalive_interval)
            )
        return options


def upstream_proxy(stream_host: str) -> Optional[str]:
    """
    Return the proxy URL the environment assigns to ``stream_host``, or None.

    An explicit transport stops httpx from mounting environment proxies itself,
    and there is only one upstream, so the choice is made once here.
    """
    url = httpx.URL(stream_host)
    proxies = urllib.request.getproxies()
    proxy = proxies.get(url.scheme) or proxies.get("all")
    if not proxy or urllib.request.proxy_bypass(url.host):
        return None
    return proxy


def build_client(
    stream_host: str,
    settings: UpstreamClientSettings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    if transport is None:
        proxy = upstream_proxy(stream_host) if settings.trust_env else None
        if proxy:
            logger.info(
                f"[Forward] Reaching {stream_host} via proxy {httpx.URL(proxy).host}"
            )
        transport = httpx.AsyncHTTPTransport(
            http2=settings.http2,
            limits=settings.limits(),
            socket_options=settings.socket_options(),
            retries=0,
            proxy=proxy,
        )
    return httpx.AsyncClient(
        transport=transport,
        timeout=settings.timeout(stream_host),
        follow_redirects=False,
    )


class UpstreamStreamingResponse(StreamingResponse):
    """StreamingResponse that always releases the upstream response it relays."""

    def __init__(self, content: AsyncIterator[bytes], upstream: httpx.Response, **kwargs):
        super().__init__(content, **kwargs)
        self.upstream = upstream

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.upstream.aclose()


class ForwardingEngine:
    def __init__(
        self,
        stream_host: str,
        settings: Optional[UpstreamClientSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.stream_host = stream_host
        self.settings = settings or UpstreamClientSettings()
        self._client = client or build_client(stream_host, self.settings)

    def target_url(self, path: str) -> str:
        return f"{self.stream_host.rstrip('/')}/{path.lstrip('/')}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def forward(self, path: str) -> Response:
        """
        Issue a single GET for ``path`` against the upstream and relay the result.

        Raises:
            UpstreamConnectError: If the upstream cannot be reached or does not
                send response headers in time.
        """
        target_url = self.target_url(path)

        with tracer.start_as_current_span("proxy_request") as span:
            span.set_attribute("proxy.target_url", target_url)
            logger.info(f"[Forward] Forwarding to: {target_url}")

            upstream = await self._open(target_url, span)
            span.set_attribute("proxy.status_code", upstream.status_code)

            if not upstream.is_success:
                return await self._relay_error(upstream)

            return UpstreamStreamingResponse(
                self._relay(upstream),
                upstream=upstream,
                status_code=200,
                media_type=STREAM_MEDIA_TYPE,
            )

    async def _open(self, target_url: str, span) -> httpx.Response:
        try:
            request = self._client.build_request(
                "GET", target_url, headers=UPSTREAM_HEADERS
            )
            return await asyncio.wait_for(
                self._client.send(request, stream=True),
                timeout=self.settings.header_deadline(target_url),
            )
        except asyncio.TimeoutError:
            logger.error(f"[Forward] No response headers from {target_url} in time")
            span.set_attribute("proxy.error", "response_header_timeout")
            raise UpstreamConnectError("timed out waiting for response headers")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"[Forward] Failed to reach {target_url}: {e}")
            span.set_attribute("proxy.error", type(e).__name__)
            raise UpstreamConnectError(str(e) or type(e).__name__)

    async def _relay_error(self, upstream: httpx.Response) -> Response:
        limit = self.settings.error_body_limit
        body = bytearray()
        try:
            async for chunk in upstream.aiter_bytes():
                body += chunk[: limit - len(body)]
                if len(body) >= limit:
                    break
        except httpx.HTTPError as e:
            logger.warning(
                f"[Forward] Error body from upstream cut short: {format_exception_message(e)}"
            )
        finally:
            await upstream.aclose()

        return Response(
            content=bytes(body),
            status_code=upstream.status_code,
            media_type=upstream.headers.get("content-type"),
        )

    async def _relay(self, upstream: httpx.Response) -> AsyncIterator[bytes]:
        piece = self.settings.transfer_buffer_size
        try:
            async for chunk in upstream.aiter_bytes():
                for start in range(0, len(chunk), piece):
                    yield chunk[start : start + piece]
        except Exception as e:
            # Cancellation and generator close are BaseExceptions and pass through untouched.
            if is_client_disconnect(e):
                logger.debug(f"[Forward] Client went away: {type(e).__name__}")
            else:
                log_exception_with_details(logger, "[Forward] stream copy error:", e)
        finally:
            await upstream.aclose()
