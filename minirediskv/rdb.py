"""Reading keys and values from RDB snapshot files."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from typing import BinaryIO

logger = logging.getLogger(__name__)

HEADER = b"REDIS0011"

_METADATA = 0xFA
_RESIZE_DB = 0xFB
_EXPIRE_MS = 0xFC
_EXPIRE_S = 0xFD
_DATABASE = 0xFE
_END = 0xFF

_INT_WIDTHS = {0: 1, 1: 2, 2: 4}


class RdbError(ValueError):
    """Raised when RDB data is malformed or truncated."""


@dataclass(frozen=True)
class RdbEntry:
    """A key/value pair read from an RDB file.

    ``expires_at`` is the timestamp as recorded in the file: milliseconds
    for millisecond expiries, seconds for second expiries, or None.
    """

    key: str
    value: str
    expires_at: int | None = None


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if data is None or len(data) != size:
        raise RdbError("unexpected end of data")
    return data


def _read_byte(stream: BinaryIO) -> int:
    return _read_exact(stream, 1)[0]


def _decode_length(first: int, stream: BinaryIO) -> int:
    kind = first >> 6
    if kind == 0:
        return first & 0x3F
    if kind == 1:
        return ((first & 0x3F) << 8) | _read_byte(stream)
    if kind == 2:
        return int.from_bytes(_read_exact(stream, 4), "big")
    raise RdbError("special encoding encountered in length")


def read_length(stream: BinaryIO) -> int:
    """Read a size-encoded integer."""
    return _decode_length(_read_byte(stream), stream)


def read_string(stream: BinaryIO) -> str:
    """Read a string-encoded value, including integer-encoded strings."""
    first = _read_byte(stream)
    if first >> 6 != 3:
        length = _decode_length(first, stream)
        return _read_exact(stream, length).decode("utf-8", "surrogateescape")
    special = first & 0x3F
    width = _INT_WIDTHS.get(special)
    if width is None:
        raise RdbError(f"unsupported special string encoding type: {special}")
    return str(int.from_bytes(_read_exact(stream, width), "little"))


def _iter_database(stream: BinaryIO) -> Iterator[RdbEntry]:
    read_length(stream)  # database index
    marker = _read_byte(stream)
    if marker != _RESIZE_DB:
        raise RdbError(f"expected hash table size marker 0xFB, got 0x{marker:x}")
    total = read_length(stream)
    read_length(stream)  # number of keys with an expiry

    for _ in range(total):
        expires_at: int | None = None
        code = _read_byte(stream)
        if code == _EXPIRE_MS:
            expires_at = int.from_bytes(_read_exact(stream, 8), "little")
            code = _read_byte(stream)
        elif code == _EXPIRE_S:
            expires_at = int.from_bytes(_read_exact(stream, 4), "little")
            code = _read_byte(stream)
        # ``code`` now holds the value type, which is not used.
        key = read_string(stream)
        value = read_string(stream)
        yield RdbEntry(key, value, expires_at)


def iter_entries(stream: BinaryIO) -> Iterator[RdbEntry]:
    """Yield every entry of an RDB stream, raising RdbError on bad data."""
    header = _read_exact(stream, len(HEADER))
    if header != HEADER:
        raise RdbError(f"invalid header: {header!r}")

    while True:
        marker = stream.read(1)
        if not marker:
            return
        code = marker[0]
        if code == _METADATA:
            read_string(stream)
            read_string(stream)
        elif code == _DATABASE:
            yield from _iter_database(stream)
        elif code == _END:
            _read_exact(stream, 8)  # checksum
            return
        else:
            raise RdbError(f"unexpected marker: 0x{code:x}")


def parse_keys(stream: BinaryIO) -> list[str]:
    """Return all keys of an RDB stream in file order."""
    return [entry.key for entry in iter_entries(stream)]


def load_entries(stream: BinaryIO) -> list[RdbEntry]:
    """Return the entries read before the end of data or the first error."""
    entries: list[RdbEntry] = []
    try:
        entries.extend(iter_entries(stream))
    except RdbError as exc:
        logger.warning("stopped reading RDB data: %s", exc)
    return entries


def read_keys(path: str | os.PathLike[str]) -> list[str]:
    """Return all keys stored in the RDB file at ``path``."""
    with open(path, "rb") as stream:
        return parse_keys(stream)


def load_file(path: str | os.PathLike[str]) -> list[RdbEntry]:
    """Load entries from ``path``; an unreadable file yields no entries."""
    try:
        stream = open(path, "rb")
    except OSError as exc:
        logger.warning("cannot open RDB file %s: %s", path, exc)
        return []
    with stream:
        return load_entries(stream)