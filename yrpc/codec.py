"""Self-describing binary encoding of typed field sequences.

Every field is written as a header (one tag byte and a little-endian
32-bit payload length) followed by its payload. Integers are fixed-width
little-endian; strings are UTF-8; byte fields are copied as they are.
"""

from __future__ import annotations

import struct
from collections.abc import Iterable, Iterator
from enum import IntEnum
from typing import Any

from .errors import ErrorKind, RpcError


class FieldType(IntEnum):
    """Wire tag of a field; also the element type of a schema."""

    INT32 = 1
    UINT32 = 2
    INT64 = 3
    UINT64 = 4
    STRING = 5
    BYTES = 6


class CodecError(RpcError):
    """Raised when values cannot be encoded or data cannot be decoded."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.BAD_PROTOCOL) -> None:
        super().__init__(message, kind)


_HEADER = struct.Struct("<BI")

_FIXED = {
    FieldType.INT32: struct.Struct("<i"),
    FieldType.UINT32: struct.Struct("<I"),
    FieldType.INT64: struct.Struct("<q"),
    FieldType.UINT64: struct.Struct("<Q"),
}

_BYTES_LIKE = (bytes, bytearray, memoryview)


def _field_type(value: Any) -> FieldType:
    try:
        return FieldType(value)
    except ValueError as exc:
        raise CodecError(f"unknown field type {value!r}") from exc


def _fits(field_type: FieldType, value: int) -> bool:
    try:
        _FIXED[field_type].pack(value)
    except struct.error:
        return False
    return True


def _infer(value: Any) -> FieldType:
    if isinstance(value, int):
        for candidate in (FieldType.INT32, FieldType.INT64, FieldType.UINT64):
            if _fits(candidate, value):
                return candidate
        raise CodecError(f"integer {value} does not fit in 64 bits")
    if isinstance(value, str):
        return FieldType.STRING
    if isinstance(value, _BYTES_LIKE):
        return FieldType.BYTES
    raise CodecError(f"unsupported value type {type(value).__name__}")


def _encode_field(value: Any, field_type: FieldType) -> bytes:
    fixed = _FIXED.get(field_type)
    if fixed is not None:
        if not isinstance(value, int):
            raise CodecError(
                f"field of type {field_type.name} needs an int, got {type(value).__name__}"
            )
        try:
            payload = fixed.pack(value)
        except struct.error as exc:
            raise CodecError(f"{value} is out of range for {field_type.name}") from exc
    elif field_type is FieldType.STRING:
        if not isinstance(value, str):
            raise CodecError(f"STRING field needs a str, got {type(value).__name__}")
        payload = value.encode("utf-8")
    else:
        if not isinstance(value, _BYTES_LIKE):
            raise CodecError(f"BYTES field needs bytes, got {type(value).__name__}")
        payload = bytes(value)
    return _HEADER.pack(field_type, len(payload)) + payload


def serialize(values: Iterable[Any], schema: Iterable[FieldType] | None = None) -> bytes:
    """Encode ``values``; the schema is inferred from the values when omitted."""
    values = tuple(values)
    if schema is None:
        types = tuple(_infer(value) for value in values)
    else:
        types = tuple(_field_type(t) for t in schema)
        if len(types) != len(values):
            raise CodecError(f"schema has {len(types)} fields but {len(values)} values were given")
    return b"".join(_encode_field(value, ft) for value, ft in zip(values, types))


def _decode(field_type: FieldType, payload: memoryview) -> Any:
    fixed = _FIXED.get(field_type)
    if fixed is not None:
        if len(payload) != fixed.size:
            raise CodecError(f"{field_type.name} field has {len(payload)} bytes, expected {fixed.size}")
        return fixed.unpack(payload)[0]
    if field_type is FieldType.STRING:
        try:
            return bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CodecError("STRING field is not valid UTF-8") from exc
    return bytes(payload)


def _iter_fields(view: memoryview) -> Iterator[tuple[FieldType, Any, int]]:
    """Yield (type, value, end offset) for each field, lazily."""
    offset = 0
    while offset < len(view):
        if len(view) - offset < _HEADER.size:
            raise CodecError("truncated field header")
        tag, length = _HEADER.unpack_from(view, offset)
        offset += _HEADER.size
        field_type = _field_type(tag)
        if len(view) - offset < length:
            raise CodecError("truncated field payload")
        payload = view[offset:offset + length]
        offset += length
        yield field_type, _decode(field_type, payload), offset


def deserialize_prefix(
    data: bytes | bytearray | memoryview, schema: Iterable[FieldType] | None = None
) -> tuple[tuple[Any, ...], int]:
    """Decode leading fields and return them with the number of bytes consumed.

    With a schema, exactly that many fields are read and any further data is
    left alone; without one, every field in ``data`` is read.
    """
    view = memoryview(data).cast("B")
    fields = _iter_fields(view)
    if schema is None:
        decoded = list(fields)
        consumed = decoded[-1][2] if decoded else 0
        return tuple(value for _, value, _ in decoded), consumed

    values = []
    consumed = 0
    for index, wanted in enumerate(_field_type(t) for t in schema):
        item = next(fields, None)
        if item is None:
            raise CodecError(f"missing field {index}: expected {wanted.name}")
        got, value, consumed = item
        if got is not wanted:
            raise CodecError(f"field {index} is {got.name}, expected {wanted.name}")
        values.append(value)
    return tuple(values), consumed


def deserialize(
    data: bytes | bytearray | memoryview, schema: Iterable[FieldType] | None = None
) -> tuple[Any, ...]:
    """Decode fields from ``data``; fields beyond the schema are ignored."""
    return deserialize_prefix(data, schema)[0]