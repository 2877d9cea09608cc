"""Server configuration and the in-memory key/value store."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass

from minirediskv.rdb import RdbEntry

logger = logging.getLogger(__name__)

MASTER_REPLID = "8371b4fb1155b71f4a04d3e1bc3e18c4a990aeeb"

EMPTY_RDB = bytes.fromhex(
    "524544495330303131fa0972656469732d76657205372e322e30fa0a72656469732d62697473"
    "c040fa056374696d65c26d08bc65fa08757365642d6d656dc2b0c41000fa08616f662d62617365"
    "c000fff06e3bfec0ff5aa2"
)


def now_ms() -> int:
    """Return the current Unix time in milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass
class Config:
    """Settings the server is started with."""

    port: int = 6379
    directory: str = "/tmp/redis-data"
    dbfilename: str = "dump.rdb"
    replicaof: str | None = None

    def full_path(self) -> str:
        """Path of the RDB snapshot file."""
        return os.path.join(self.directory, self.dbfilename)

    def role(self) -> str:
        """Replication role: 'slave' when a master is configured, else 'master'."""
        return "slave" if self.replicaof else "master"


class Store:
    """Thread-safe string store with optional per-key expiry."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._expiry: dict[str, int] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: str, px: int | None = None) -> None:
        """Store ``value``; with ``px`` it expires that many milliseconds from now."""
        with self._lock:
            if px is not None:
                self._expiry[key] = now_ms() + px
            self._data[key] = value

    def _live(self, key: str, now: int | None) -> str | None:
        value = self._data.get(key)
        if value is None:
            return None
        expires_at = self._expiry.get(key)
        current = now_ms() if now is None else now
        if expires_at is not None and current > expires_at:
            del self._expiry[key]
            del self._data[key]
            return None
        return value

    def get(self, key: str, now: int | None = None) -> str | None:
        """Return the value of ``key``, or None if it is missing or expired."""
        with self._lock:
            return self._live(key, now)

    def type_of(self, key: str, now: int | None = None) -> str:
        """Return 'string' for a live key and 'none' otherwise."""
        with self._lock:
            return "none" if self._live(key, now) is None else "string"

    def load(self, entries: Iterable[RdbEntry]) -> None:
        """Add entries read from an RDB file, keeping their recorded expiries."""
        with self._lock:
            for entry in entries:
                self._data[entry.key] = entry.value
                if entry.expires_at is not None:
                    self._expiry[entry.key] = entry.expires_at

    def keys(self) -> list[str]:
        """Return the keys held in memory, in insertion order."""
        with self._lock:
            return list(self._data)


def ensure_rdb_file(config: Config) -> None:
    """Create the snapshot directory and an empty snapshot file if missing."""
    path = config.full_path()
    if os.path.exists(path):
        return
    try:
        os.makedirs(config.directory, exist_ok=True)
        with open(path, "xb"):
            pass
    except FileExistsError:
        pass
    except OSError as exc:
        logger.error("cannot create RDB file %s: %s", path, exc)
        return
    logger.info("created RDB file %s", path)