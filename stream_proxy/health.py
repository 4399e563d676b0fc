import os

from stream_proxy.credentials.cache import CredentialCache
from stream_proxy.models import HealthReport, ListenSpec


class HealthReporter:
    """Read-only view of what the proxy is serving; never touches the config file."""

    def __init__(self, cache: CredentialCache, listen: ListenSpec, stream_host: str):
        self._cache = cache
        self._listen = listen
        self._stream_host = stream_host

    def report(self) -> HealthReport:
        return HealthReport(
            ok=True,
            users=self._cache.current.usernames(),
            config_file=os.path.abspath(self._cache.path),
            listen=self._listen,
            stream_host=self._stream_host,
        )
