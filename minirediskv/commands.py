"""Command execution for client connections and replica fan-out."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from minirediskv.rdb import read_keys
from minirediskv.resp import (
    RespError,
    encode_array,
    encode_bulk,
    encode_error,
    encode_integer,
    encode_simple,
    parse_resp,
)
from minirediskv.store import EMPTY_RDB, MASTER_REPLID, Config, Store

logger = logging.getLogger(__name__)

UNKNOWN_COMMAND = encode_error("ERR unknown command")
PARSING_FAILED = encode_error("ERR Parsing failed")
OK = encode_simple("OK")
GETACK = encode_array(["replconf", "getack", "*"])

_INTEGER = re.compile(r"[+-]?[0-9]+")

# Commands acknowledged with a fixed reply and no effect on the store.
_FIXED_REPLIES: dict[str, bytes] = {
    "ping": encode_bulk("PONG"),
    "save": OK,
}


class Connection(Protocol):
    def sendall(self, data: bytes) -> Any: ...


class ReplicaSet:
    """Connections of replicas that receive forwarded write commands."""

    def __init__(self) -> None:
        self._conns: list[Connection | None] = []
        self._lock = threading.Lock()

    def add(self, conn: Connection | None) -> None:
        """Register a replica connection."""
        with self._lock:
            self._conns.append(conn)

    def __len__(self) -> int:
        with self._lock:
            return len(self._conns)

    def broadcast(self, message: bytes) -> None:
        """Send ``message`` to every replica; failures are logged and skipped."""
        with self._lock:
            conns = list(self._conns)
        logger.info("forwarding to %d replica connection(s)", len(conns))
        for conn in conns:
            if conn is None:
                logger.debug("replica connection is missing, skipping")
                continue
            try:
                conn.sendall(message)
            except OSError as exc:
                logger.warning("failed to send message to replica: %s", exc)

    def request_acks(self) -> None:
        """Ask every replica to report its replication offset."""
        self.broadcast(GETACK)


Handler = Callable[[Sequence[str], bytes, Any], bytes]


class CommandProcessor:
    """Executes parsed commands against a store and returns the reply bytes."""

    def __init__(
        self,
        store: Store,
        config: Config,
        replicas: ReplicaSet | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.replicas = replicas if replicas is not None else ReplicaSet()
        self.repl_offset = 0
        self._handlers: dict[str, Handler] = {
            "echo": self._echo,
            "set": self._set,
            "get": self._get,
            "config": self._config,
            "keys": self._keys,
            "info": self._info,
            "replconf": self._replconf,
            "psync": self._psync,
            "wait": self._wait,
            "type": self._type,
        }

    def handle_message(self, raw: bytes, conn: Any = None) -> bytes:
        """Parse a raw RESP message and execute it."""
        try:
            parsed = parse_resp(raw)
        except RespError as exc:
            logger.error("failed to parse RESP message: %s", exc)
            return PARSING_FAILED
        return self.execute(parsed, raw, conn)

    def execute(self, parsed: Sequence[str], raw: bytes = b"", conn: Any = None) -> bytes:
        """Run one command and return its reply.

        ``raw`` is the original message, forwarded to replicas on writes;
        ``conn`` is the client connection, registered as a replica by PSYNC.
        KEYS reads the snapshot file and lets OSError or RdbError propagate.
        """
        if not parsed:
            return UNKNOWN_COMMAND
        name = parsed[0].lower()
        fixed = _FIXED_REPLIES.get(name)
        if fixed is not None:
            return fixed
        handler = self._handlers.get(name)
        if handler is None:
            return UNKNOWN_COMMAND
        return handler(parsed, raw, conn)

    @property
    def _is_master(self) -> bool:
        return self.config.role() == "master"

    def _echo(self, parsed: Sequence[str], raw: bytes, conn: Any) -> bytes:
        if len(parsed) < 2:
            return UNKNOWN_COMMAND
        return encode_bulk(parsed[1])

    def _set(self, parsed: Sequence[str], raw: bytes, conn: Any) -> bytes:
        if len(parsed) < 3:
            return UNKNOWN_COMMAND
        self.replicas.broadcast(raw)
        key, value = parsed[1], parsed[2]
        px: int | None = None
        if len(parsed) == 5 and parsed[3] == "px":
            if not _INTEGER.fullmatch(parsed[4]):
                logger.error("expiration time is not an integer: %r", parsed[4])
                return UNKNOWN_COMMAND
            px = int(parsed[4])
        self.store.set(key, value, px)
        return OK

    def _get(self, parsed: Sequence[str], raw: bytes, conn: Any) -> bytes:
        if len(parsed) < 2:
            return UNKNOWN_COMMAND
        return encode_bulk(self.store.get(parsed[1]))

    def _config(self, parsed: Sequence[str], raw: bytes, conn: Any) -> bytes:
        if len(parsed) < 3:
            return UNKNOWN_COMMAND
        name = parsed[2].lower()
        if name == "dir":
            answer = self.config.directory
        elif name == "dbfilename":
            answer = self.config.dbfilename
        else:
            return UNKNOWN_COMMAND
        return encode_array([name, answer])

    def _keys(self, parsed: Sequence[str], raw: bytes, conn: Any) -> bytes:
        if len(parsed) < 2 or parsed[1] != "*":
            return UNKNOWN_COMMAND
        return encode_array(read_keys(self.config.full_path()))

    def _info(self, parsed: Sequence[str], raw: bytes, conn: Any) -> bytes:
        if len(parsed) < 2 or parsed[1].lower() != "replication":
            return UNKNOWN_COMMAND
        text = (
            f"role:{self.config.role()}\n"
            f"master_replid:{MASTER_REPLID}\n"
            f"master_repl_offset:{self.repl_offset}\n"
        )
        return encode_bulk(text)

    def _replconf(self, parsed: Sequence[str], raw: bytes, conn: Any) -> bytes:
        return OK if self._is_master else UNKNOWN_COMMAND

    def _psync(self, parsed: Sequence[str], raw: bytes, conn: Any) -> bytes:
        if not self._is_master or len(parsed) < 3:
            return UNKNOWN_COMMAND
        self.replicas.add(conn)
        if parsed[1].lower() == "?" and parsed[2].lower() == "-1":
            header = encode_simple(f"FULLRESYNC {MASTER_REPLID} 0")
            return header + b"$" + str(len(EMPTY_RDB)).encode() + b"\r\n" + EMPTY_RDB
        return UNKNOWN_COMMAND

    def _wait(self, parsed: Sequence[str], raw: bytes, conn: Any) -> bytes:
        if not self._is_master or len(parsed) < 3:
            return UNKNOWN_COMMAND
        return encode_integer(len(self.replicas))

    def _type(self, parsed: Sequence[str], raw: bytes, conn: Any) -> bytes:
        if len(parsed) < 2:
            return UNKNOWN_COMMAND
        return encode_simple(self.store.type_of(parsed[1]))