import logging
import os
from dataclasses import dataclass
from typing import Optional

import httpx

from stream_proxy.config import loader
from stream_proxy.errors import ConfigParseError
from stream_proxy.models import ListenSpec, ProxyConfig
from stream_proxy.vars import CONFIG_PATH, HOST, PORT, STREAM_HOST

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class StartupOverrides:
    config_path: str = "config.json"
    host: Optional[str] = None
    port: Optional[int] = None
    stream_host: Optional[str] = None

    @classmethod
    def from_env(cls) -> "StartupOverrides":
        return cls(
            config_path=CONFIG_PATH,
            host=HOST or None,
            port=PORT,
            stream_host=STREAM_HOST or None,
        )


@dataclass(frozen=True)
class ProxyRuntime:
    config_path: str
    listen: ListenSpec
    stream_host: str
    config: ProxyConfig
    mtime_ns: int


def _check_stream_host(config_path: str, stream_host: str) -> None:
    try:
        url = httpx.URL(stream_host)
    except httpx.InvalidURL as e:
        raise ConfigParseError(config_path, f"stream_host {stream_host!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigParseError(
            config_path, f"stream_host {stream_host!r} must look like http(s)://host[:port]"
        )


def resolve_startup(overrides: StartupOverrides) -> ProxyRuntime:
    """
    Create the config file if needed, load it, and apply the startup overrides.

    Raises:
        ConfigIOError, ConfigParseError: Any failure here is fatal to startup.
    """
    path = overrides.config_path
    loader.ensure_default(path)
    config, mtime_ns = loader.load(path)

    listen = ListenSpec(
        host=overrides.host or config.listen.host,
        port=overrides.port or config.listen.port,
    )
    stream_host = overrides.stream_host or config.stream_host
    _check_stream_host(path, stream_host)

    logger.info(
        f"[StreamProxy] Startup config -> listen={listen.host}:{listen.port}, "
        f"stream_host={stream_host}, users={len(config.users)}"
    )
    logger.info(f"[StreamProxy] Config file: {os.path.abspath(path)}")
    return ProxyRuntime(
        config_path=path,
        listen=listen,
        stream_host=stream_host,
        config=config,
        mtime_ns=mtime_ns,
    )
