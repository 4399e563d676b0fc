import asyncio
import json
import os
from typing import AsyncIterator, Callable, List, Optional

import httpx

from stream_proxy.forwarding.engine import UpstreamClientSettings, build_client

TEST_STREAM_HOST = "http://media.internal:8080"


async def endless_stream(chunk: bytes = b"\x47" * 188) -> AsyncIterator[bytes]:
    """An upstream body that never finishes, like a live channel."""
    while True:
        yield chunk
        await asyncio.sleep(0)


class UpstreamDouble:
    """httpx.MockTransport-backed upstream that records every request it receives."""

    def __init__(
        self,
        status_code: int = 200,
        content=b"",
        headers: Optional[dict] = None,
        error: Optional[Exception] = None,
        handler: Optional[Callable] = None,
    ):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.error = error
        self._handler = handler
        self.calls: List[httpx.Request] = []

    def handle(self, request: httpx.Request):
        self.calls.append(request)
        if self._handler is not None:
            return self._handler(request)
        if self.error is not None:
            raise self.error
        content = self.content() if callable(self.content) else self.content
        return httpx.Response(self.status_code, headers=self.headers, content=content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(
        self,
        stream_host: str = TEST_STREAM_HOST,
        settings: Optional[UpstreamClientSettings] = None,
    ) -> httpx.AsyncClient:
        return build_client(
            stream_host, settings or UpstreamClientSettings(), transport=self.transport
        )


def write_config(path, users=None, stream_host=TEST_STREAM_HOST, port=8000, mtime_ns=None):
    """Write a config file and optionally pin its mtime so reload tests are deterministic."""
    data = {
        "listen": {"host": "127.0.0.1", "port": port},
        "stream_host": stream_host,
        "users": users if users is not None else {"alice": "s3cret"},
    }
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(data, fh)
    if mtime_ns is not None:
        os.utime(path, ns=(mtime_ns, mtime_ns))
    return path
