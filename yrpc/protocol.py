"""Frame layout, frame splitting and reply inspection.

A frame is ``| ProtocolHead | body |`` where the head is packed
little-endian with no padding and ``protocol_length`` covers the whole frame.
"""

from __future__ import annotations

import struct
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, ClassVar

from .codec import CodecError, FieldType, deserialize, serialize
from .errors import ERR_PREFIX, ErrorKind, ReplyType, RpcError

PROTOCOL_LENGTH_LIMIT = 2 * 1024 * 1024
"""Frames at least this long are rejected as malformed."""

REPLY_TYPE_FIELD = FieldType.INT32
"""Wire type of the leading :class:`ReplyType` field of a reply."""

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK64 = (1 << 64) - 1


@dataclass(frozen=True)
class ProtocolHead:
    """Fixed-size header leading every frame."""

    method_hash: int
    call_seq: int
    protocol_length: int

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<QQI")
    SIZE: ClassVar[int] = _STRUCT.size

    def pack(self) -> bytes:
        try:
            return self._STRUCT.pack(self.method_hash, self.call_seq, self.protocol_length)
        except struct.error as exc:
            raise ValueError(f"header field out of range: {self}") from exc

    @classmethod
    def unpack(cls, data: bytes | bytearray | memoryview) -> ProtocolHead:
        if len(data) < cls.SIZE:
            raise RpcError(ERR_PREFIX + "protocol head is truncated!", ErrorKind.BAD_PROTOCOL)
        return cls(*cls._STRUCT.unpack_from(data, 0))


def parse_protocols(buffer: bytearray) -> list[bytes]:
    """Remove every complete frame from the front of ``buffer`` and return them.

    An incomplete trailing frame stays in the buffer.
    """
    frames: list[bytes] = []
    while len(buffer) >= ProtocolHead.SIZE:
        length = ProtocolHead.unpack(buffer).protocol_length
        if length >= PROTOCOL_LENGTH_LIMIT:
            raise RpcError(
                ERR_PREFIX + "protocol length is invalid!",
                ErrorKind.BAD_PROTOCOL_LENGTH_OVER_LIMIT,
            )
        if length < ProtocolHead.SIZE:
            raise RpcError(ERR_PREFIX + "parse buffer failed!", ErrorKind.BAD_PROTOCOL)
        if len(buffer) < length:
            break
        frames.append(bytes(buffer[:length]))
        del buffer[:length]
    return frames


def encode_frame(method_hash: int, seq: int, body: bytes | bytearray | memoryview) -> bytes:
    """Build a frame around an already encoded body."""
    body = bytes(body)
    head = ProtocolHead(method_hash, seq, ProtocolHead.SIZE + len(body))
    return head.pack() + body


def encode_request(
    method_hash: int, seq: int, values: Iterable[Any], schema: Iterable[FieldType] | None = None
) -> bytes:
    """Build a frame whose body is ``values`` encoded with ``schema``."""
    return encode_frame(method_hash, seq, serialize(values, schema))


def method_hash(name: str) -> int:
    """Stable 64-bit hash identifying a method name on the wire."""
    value = _FNV_OFFSET
    for byte in name.encode("utf-8"):
        value = ((value ^ byte) * _FNV_PRIME) & _MASK64
    return value


def reply_to_error(body: bytes | bytearray | memoryview) -> RpcError | None:
    """Return the error a reply body carries, or None for a successful reply."""
    try:
        (reply_type,) = deserialize(body, (REPLY_TYPE_FIELD,))
    except CodecError:
        return RpcError(
            ERR_PREFIX + "service reply-data has no RpcReplyType!", ErrorKind.BAD_PROTOCOL
        )

    if reply_type != ReplyType.FAILED:
        return None

    try:
        _, message = deserialize(body, (REPLY_TYPE_FIELD, FieldType.STRING))
    except CodecError:
        return RpcError(ERR_PREFIX + "service reply-data err type is bad!", ErrorKind.BAD_PROTOCOL)
    return RpcError(message, ErrorKind.CLIENT_FAILED)