import json
from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 8000
DEFAULT_STREAM_HOST = "http://127.0.0.1:8080"
DEFAULT_USERS = {"test": "123456"}


def _as_credential_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class ListenSpec(BaseModel):
    host: str = DEFAULT_LISTEN_HOST
    port: int = DEFAULT_LISTEN_PORT

    @field_validator("host", mode="before")
    @classmethod
    def _default_host(cls, value):
        return value or DEFAULT_LISTEN_HOST

    @field_validator("port", mode="before")
    @classmethod
    def _default_port(cls, value):
        return value or DEFAULT_LISTEN_PORT

    @field_validator("port")
    @classmethod
    def _port_in_range(cls, value: int) -> int:
        if not 1 <= value <= 65535:
            raise ValueError(f"port {value} is outside 1-65535")
        return value


class ProxyConfig(BaseModel):
    listen: ListenSpec = Field(default_factory=ListenSpec)
    stream_host: str = ""
    users: Dict[str, str] = Field(default_factory=dict)

    @field_validator("listen", mode="before")
    @classmethod
    def _default_listen(cls, value):
        return value if value is not None else {}

    @field_validator("stream_host", mode="before")
    @classmethod
    def _default_stream_host(cls, value):
        return value if value is not None else ""

    @field_validator("users", mode="before")
    @classmethod
    def _stringify_users(cls, value):
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("users must be an object of username -> password")
        return {str(k): _as_credential_string(v) for k, v in value.items()}


def default_config() -> ProxyConfig:
    return ProxyConfig(
        listen=ListenSpec(host=DEFAULT_LISTEN_HOST, port=DEFAULT_LISTEN_PORT),
        stream_host=DEFAULT_STREAM_HOST,
        users=dict(DEFAULT_USERS),
    )


class HealthReport(BaseModel):
    ok: bool
    users: List[str]
    config_file: str
    listen: ListenSpec
    stream_host: str
