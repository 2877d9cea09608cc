"""Replication client: handshake with a master and apply its write stream."""

from __future__ import annotations

import logging
import socket
from typing import BinaryIO

from minirediskv.commands import PARSING_FAILED
from minirediskv.resp import RespError, encode_array, parse_resp
from minirediskv.store import Config, Store

logger = logging.getLogger(__name__)

# Byte sizes that the master counts for commands it propagates.
_PING_SIZE = 14
_GETACK_SIZE = 37
_SET_OVERHEAD = 3 + 22


def parse_master_address(replicaof: str) -> tuple[str, int]:
    """Split a ``"<host> <port>"`` setting into host and port."""
    parts = replicaof.split(" ")
    if len(parts) < 2:
        raise ValueError(f"expected '<host> <port>', got: {replicaof!r}")
    host, port_text = parts[0], parts[1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid master port: {port_text!r}") from None
    return host, port


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8", "surrogateescape"))


def _send(writer: BinaryIO, data: bytes) -> None:
    writer.write(data)
    flush = getattr(writer, "flush", None)
    if flush is not None:
        flush()


def _read_line(reader: BinaryIO, what: str) -> bytes:
    line = reader.readline()
    if not line:
        raise ConnectionError(f"master closed the connection while waiting for {what}")
    logger.info("received from master: %r", line)
    return line


class ReplicaLink:
    """Connection of a replica to its master and the replication offset."""

    def __init__(self, config: Config, store: Store) -> None:
        self.config = config
        self.store = store
        self.offset = 0

    def handshake(self, reader: BinaryIO, writer: BinaryIO) -> bytes:
        """Run PING, REPLCONF and PSYNC against the master; return the RDB payload."""
        _send(writer, encode_array(["PING"]))
        _read_line(reader, "PING response")

        _send(
            writer,
            encode_array(["REPLCONF", "listening-port", str(self.config.port)]),
        )
        _read_line(reader, "REPLCONF listening-port response")

        _send(writer, encode_array(["REPLCONF", "capa", "psync2"]))
        _read_line(reader, "REPLCONF capa response")

        _send(writer, encode_array(["PSYNC", "?", "-1"]))
        _read_line(reader, "FULLRESYNC response")
        header = _read_line(reader, "RDB header")
        if not header.startswith(b"$"):
            raise ValueError(f"unexpected RDB header: {header!r}")
        try:
            size = int(header[1:].strip())
        except ValueError:
            raise ValueError(f"cannot parse RDB size: {header!r}") from None

        payload = reader.read(size)
        if payload is None or len(payload) != size:
            raise ConnectionError("master closed the connection while sending RDB data")
        logger.info("RDB file received (%d bytes)", size)
        return payload

    def _apply_sets(self, parsed: list[str]) -> tuple[list[str], str]:
        command = parsed[0].lower()
        while command == "set":
            if len(parsed) < 3:
                break
            key, value = parsed[1], parsed[2]
            self.offset += (
                _SET_OVERHEAD
                + _byte_length(key)
                + _byte_length(value)
                + len(str(_byte_length(key))) - 1
                + len(str(_byte_length(value))) - 1
            )
            px: int | None = None
            if len(parsed) == 5 and parsed[3] == "px":
                try:
                    px = int(parsed[4])
                except ValueError:
                    logger.error("expiration time is not an integer: %r", parsed[4])
                    break
            logger.info("replica: setting key %r", key)
            self.store.set(key, value, px)
            if len(parsed) > 3:
                parsed = parsed[3:]
                command = parsed[0].lower()
            else:
                break
        return parsed, command

    def process(self, message: bytes) -> bytes | None:
        """Apply one message from the master; return the reply to send, if any."""
        try:
            parsed = parse_resp(message)
        except RespError as exc:
            logger.error("failed to parse RESP message from master: %s", exc)
            return PARSING_FAILED
        if not parsed:
            return None

        command = parsed[0].lower()
        if command == "ping":
            if len(parsed) > 1:
                parsed = parsed[1:]
                command = parsed[0].lower()
            self.offset += _PING_SIZE

        if command == "set":
            parsed, command = self._apply_sets(parsed)

        reply: bytes | None = None
        if command == "replconf":
            if len(parsed) == 3 and parsed[1].lower() == "getack":
                reply = encode_array(["REPLCONF", "ACK", str(self.offset)])
            self.offset += _GETACK_SIZE
        return reply

    def run(self) -> None:
        """Connect to the configured master and follow its stream until it closes."""
        try:
            host, port = parse_master_address(self.config.replicaof or "")
        except ValueError as exc:
            logger.error("invalid master address: %s", exc)
            return
        logger.info("connecting to master at %s:%d", host, port)
        try:
            with socket.create_connection((host, port)) as sock, sock.makefile(
                "rb"
            ) as reader, sock.makefile("wb") as writer:
                self.handshake(reader, writer)
                while True:
                    data = reader.read1(1024)
                    if not data:
                        logger.info("master closed the connection")
                        return
                    logger.info("received message from master: %r", data)
                    reply = self.process(data)
                    if reply:
                        _send(writer, reply)
        except (OSError, ValueError) as exc:
            logger.error("replication from master failed: %s", exc)