"""Native Messaging framing: 4-byte little-endian length prefix + UTF-8 JSON payload.

Both directions of the browser <-> host pipe use the same framing. Chrome caps a
single host message at 1 MiB, so anything outside `1..MAX_FRAME_BYTES` is a
protocol fault and the connection is torn down by the caller.
"""

from __future__ import annotations

import asyncio
import json
import struct
from typing import Any, BinaryIO

MAX_FRAME_BYTES = 1_048_576
_HEADER = struct.Struct("<I")


class FrameError(ValueError):
    """Base class for protocol faults on the native messaging stream."""


class InvalidLength(FrameError):
    def __init__(self, length: int) -> None:
        super().__init__(f"invalid frame length: {length}")
        self.length = length


class IncompleteMessage(FrameError):
    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"incomplete frame: expected {expected} bytes, got {received}")
        self.expected = expected
        self.received = received


class MalformedPayload(FrameError):
    """Frame payload is not a UTF-8 JSON object."""


def _check_length(length: int) -> None:
    if length <= 0 or length > MAX_FRAME_BYTES:
        raise InvalidLength(length)


def encode_frame(payload: bytes) -> bytes:
    _check_length(len(payload))
    return _HEADER.pack(len(payload)) + payload


def _read_exact(stream: BinaryIO, n: int) -> bytes:
    # Pipes may return short reads; keep going until n bytes or EOF.
    buf = bytearray()
    while len(buf) < n:
        chunk = stream.read(n - len(buf))
        if not chunk:
            break
        buf.extend(chunk)
    return bytes(buf)


def read_frame(stream: BinaryIO) -> bytes | None:
    """Read one frame payload. Returns None on a clean end of stream."""
    header = _read_exact(stream, _HEADER.size)
    if len(header) < _HEADER.size:
        return None
    (length,) = _HEADER.unpack(header)
    _check_length(length)
    payload = _read_exact(stream, length)
    if len(payload) != length:
        raise IncompleteMessage(length, len(payload))
    return payload


async def read_frame_async(reader: asyncio.StreamReader) -> bytes | None:
    try:
        header = await reader.readexactly(_HEADER.size)
    except asyncio.IncompleteReadError:
        return None
    (length,) = _HEADER.unpack(header)
    _check_length(length)
    try:
        return await reader.readexactly(length)
    except asyncio.IncompleteReadError as exc:
        raise IncompleteMessage(length, len(exc.partial)) from None


def write_frame(stream: BinaryIO, payload: bytes) -> None:
    stream.write(encode_frame(payload))
    stream.flush()


def encode_json(msg: dict[str, Any]) -> bytes:
    return json.dumps(msg, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_json(payload: bytes) -> dict[str, Any]:
    try:
        obj = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as exc:
        raise MalformedPayload(f"undecodable payload: {exc}") from exc
    if not isinstance(obj, dict):
        raise MalformedPayload(f"expected a JSON object, got {type(obj).__name__}")
    return obj


def read_message(stream: BinaryIO) -> dict[str, Any] | None:
    payload = read_frame(stream)
    if payload is None:
        return None
    return decode_json(payload)


def write_message(stream: BinaryIO, msg: dict[str, Any]) -> None:
    write_frame(stream, encode_json(msg))


__all__ = [
    "MAX_FRAME_BYTES",
    "FrameError",
    "IncompleteMessage",
    "InvalidLength",
    "MalformedPayload",
    "decode_json",
    "encode_frame",
    "encode_json",
    "read_frame",
    "read_frame_async",
    "read_message",
    "write_frame",
    "write_message",
]
