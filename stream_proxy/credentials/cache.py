"""
In-memory credential snapshots kept in step with the config file.

Readers compare the file's mtime against the snapshot they already hold and
return it without locking when nothing changed. When the mtime moves, one
caller reloads under the lock while the others wait and then pick up the new
snapshot. A failed reload never surfaces to callers: the previous snapshot
stays in service until a later file version parses cleanly.
"""

import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Tuple

from stream_proxy.config import loader
from stream_proxy.errors import ConfigError
from stream_proxy.models import ProxyConfig

logger = logging.getLogger("uvicorn.error")

LoadFn = Callable[[str], Tuple[ProxyConfig, int]]
StatFn = Callable[[str], Optional[int]]

# None is a valid "file missing" mtime, so an explicit marker means "nothing rejected"
_NOTHING_REJECTED = object()


@dataclass(frozen=True)
class CredentialSnapshot:
    users: Mapping[str, str]
    mtime_ns: Optional[int]

    @classmethod
    def build(cls, users: Mapping[str, str], mtime_ns: Optional[int]) -> "CredentialSnapshot":
        return cls(users=MappingProxyType(dict(users)), mtime_ns=mtime_ns)

    def usernames(self) -> list[str]:
        return sorted(self.users)


class CredentialCache:
    def __init__(
        self,
        path: str,
        initial: CredentialSnapshot,
        load_fn: LoadFn = loader.load,
        stat_fn: StatFn = loader.stat_mtime_ns,
    ):
        self.path = path
        self._snapshot = initial
        self._load = load_fn
        self._stat = stat_fn
        self._reload_lock = threading.Lock()
        # mtime of the last file version that failed to load; not retried until it changes
        self._rejected_mtime_ns = _NOTHING_REJECTED

    @classmethod
    def from_config(cls, path: str, config: ProxyConfig, mtime_ns: int, **kwargs) -> "CredentialCache":
        return cls(path, CredentialSnapshot.build(config.users, mtime_ns), **kwargs)

    @property
    def current(self) -> CredentialSnapshot:
        """The snapshot in service right now, without checking the file."""
        return self._snapshot

    def _is_fresh(self, mtime_ns: Optional[int], snapshot: CredentialSnapshot) -> bool:
        return mtime_ns == snapshot.mtime_ns or mtime_ns == self._rejected_mtime_ns

    def get(self) -> CredentialSnapshot:
        snapshot = self._snapshot
        if self._is_fresh(self._stat(self.path), snapshot):
            return snapshot

        with self._reload_lock:
            snapshot = self._snapshot
            mtime_ns = self._stat(self.path)
            if self._is_fresh(mtime_ns, snapshot):
                return snapshot

            try:
                config, loaded_mtime_ns = self._load(self.path)
            except ConfigError as e:
                self._rejected_mtime_ns = mtime_ns
                logger.warning(
                    f"[CredentialCache] Reload failed, keeping {len(snapshot.users)} users: {e}"
                )
                return snapshot

            fresh = CredentialSnapshot.build(config.users, loaded_mtime_ns)
            self._snapshot = fresh
            self._rejected_mtime_ns = _NOTHING_REJECTED
            logger.info(f"[CredentialCache] users hot-reloaded: {len(fresh.users)}")
            return fresh
