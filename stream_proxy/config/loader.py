"""
Reading and writing the persisted proxy configuration.

The file is owned by the operator; at runtime the proxy only reads it. Every
successful load is tagged with the file's ``st_mtime_ns`` so callers can tell
whether the on-disk version has changed since.
"""

import json
import logging
import os
from typing import Optional, Tuple

from pydantic import ValidationError

from stream_proxy.errors import ConfigIOError, ConfigParseError
from stream_proxy.models import ProxyConfig, default_config

logger = logging.getLogger("uvicorn.error")


def stat_mtime_ns(path: str) -> Optional[int]:
    """Return the modification time of ``path`` in nanoseconds, or None if it cannot be stat'ed."""
    try:
        return os.stat(path).st_mtime_ns
    except OSError:
        return None


def ensure_default(path: str) -> bool:
    """
    Write the default configuration to ``path`` unless a file already exists there.

    Returns:
        True if a new file was written, False if one was already present.

    Raises:
        ConfigIOError: If the parent directory or the file cannot be created.
    """
    if os.path.exists(path):
        return False

    dirpath = os.path.dirname(os.path.normpath(path))
    try:
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(default_config().model_dump(), fh, ensure_ascii=False, indent=2)
            fh.write("\n")
    except OSError as e:
        raise ConfigIOError(path, f"cannot write default config: {e}") from e

    logger.info(f"[Config] Wrote default config to {os.path.abspath(path)}")
    return True


def load(path: str) -> Tuple[ProxyConfig, int]:
    """
    Read and parse the configuration at ``path``.

    The modification time is taken before the content is read, so a rewrite
    racing with this call can only leave the result tagged as older than the
    file, which the next freshness check picks up.

    Raises:
        ConfigIOError: If the file cannot be stat'ed or read.
        ConfigParseError: If the content is not UTF-8 JSON or not a valid configuration.
    """
    try:
        mtime_ns = os.stat(path).st_mtime_ns
        with open(path, "rb") as fh:
            raw = fh.read()
    except OSError as e:
        raise ConfigIOError(path, f"cannot read config: {e}") from e

    try:
        data = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise ConfigParseError(path, f"not valid UTF-8: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigParseError(path, f"invalid JSON: {e}") from e
    except RecursionError as e:
        raise ConfigParseError(path, "JSON nested too deeply") from e

    if not isinstance(data, dict):
        raise ConfigParseError(path, "top-level value must be an object")

    try:
        config = ProxyConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigParseError(path, f"invalid config: {e}") from e
    except RecursionError as e:
        raise ConfigParseError(path, "credential value nested too deeply") from e

    return config, mtime_ns
