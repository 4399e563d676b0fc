import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "stream-proxy")

# Startup-only; the credential mapping is the only hot-reloaded part of the file.
CONFIG_PATH = os.environ.get("STREAM_CONFIG", "config.json")
HOST = os.environ.get("HOST", "")
STREAM_HOST = os.environ.get("STREAM_HOST", "")


def _parse_port(raw: str):
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


PORT = _parse_port(os.environ.get("PORT", ""))

LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
