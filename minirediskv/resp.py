"""Parsing and encoding of RESP (REdis Serialization Protocol) messages."""

from __future__ import annotations

import re
from collections.abc import Iterable

_CRLF = b"\r\n"
_INTEGER = re.compile(r"[+-]?[0-9]+")


class RespError(ValueError):
    """Raised when a RESP message cannot be parsed."""


def _as_bytes(value: str | bytes) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return value.encode("utf-8", "surrogateescape")


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8", "surrogateescape"))


def parse_resp(data: str | bytes) -> list[str]:
    """Return the bulk strings of a RESP array message.

    Lines that are not bulk-string headers are skipped, so several
    arrays sent back to back yield all of their elements in order.
    """
    if isinstance(data, (bytes, bytearray)):
        text = bytes(data).decode("utf-8", "surrogateescape")
    else:
        text = data

    lines = iter(text.split("\r\n"))
    first = next(lines)
    if not first.startswith("*"):
        raise RespError(f"expected array prefix '*', got: {first}")

    elements: list[str] = []
    for line in lines:
        if not line.startswith("$"):
            continue
        length_text = line[1:]
        if not _INTEGER.fullmatch(length_text):
            raise RespError(f"failed to parse bulk string length: {length_text!r}")
        length = int(length_text)
        try:
            content = next(lines)
        except StopIteration:
            raise RespError(
                "unexpected end of input while reading string content"
            ) from None
        value = content.strip("\r")
        if _byte_length(value) != length:
            raise RespError(
                f"bulk string length {_byte_length(value)} does not match declared length {length}"
            )
        elements.append(value)
    return elements


def encode_bulk(value: str | bytes | None) -> bytes:
    """Encode a bulk string; None becomes the null bulk string."""
    if value is None:
        return b"$-1" + _CRLF
    payload = _as_bytes(value)
    return b"$" + str(len(payload)).encode() + _CRLF + payload + _CRLF


def encode_array(items: Iterable[str | bytes]) -> bytes:
    """Encode a sequence of strings as a RESP array of bulk strings."""
    parts = [encode_bulk(item) for item in items]
    return b"*" + str(len(parts)).encode() + _CRLF + b"".join(parts)


def encode_simple(text: str) -> bytes:
    """Encode a simple string reply."""
    return b"+" + _as_bytes(text) + _CRLF


def encode_error(text: str) -> bytes:
    """Encode an error reply."""
    return b"-" + _as_bytes(text) + _CRLF


def encode_integer(number: int) -> bytes:
    """Encode an integer reply."""
    return b":" + str(int(number)).encode() + _CRLF