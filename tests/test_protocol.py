import pytest

from yrpc.codec import FieldType, deserialize, serialize
from yrpc.errors import ErrorKind, ReplyType, RpcError
from yrpc.protocol import (
    PROTOCOL_LENGTH_LIMIT,
    REPLY_TYPE_FIELD,
    ProtocolHead,
    encode_frame,
    encode_request,
    method_hash,
    parse_protocols,
    reply_to_error,
)


def test_head_size_is_packed():
    assert len(ProtocolHead(1, 2, 3).pack()) == ProtocolHead.SIZE == 20


def test_head_wire_layout():
    packed = ProtocolHead(1, 2, 20).pack()
    assert packed == bytes([1] + [0] * 7 + [2] + [0] * 7 + [20, 0, 0, 0])


def test_head_round_trip():
    head = ProtocolHead(2**64 - 1, 42, 1000)
    assert ProtocolHead.unpack(head.pack()) == head


def test_unpack_short_data_raises():
    with pytest.raises(RpcError) as info:
        ProtocolHead.unpack(b"\x00" * 5)
    assert info.value.kind is ErrorKind.BAD_PROTOCOL


def test_pack_out_of_range_raises():
    with pytest.raises(ValueError):
        ProtocolHead(-1, 0, 0).pack()


def test_encode_frame_sets_length_and_body():
    frame = encode_frame(7, 9, b"abc")
    head = ProtocolHead.unpack(frame)
    assert head.method_hash == 7
    assert head.call_seq == 9
    assert head.protocol_length == len(frame)
    assert frame[ProtocolHead.SIZE:] == b"abc"


def test_encode_request_body_decodes():
    schema = (FieldType.INT32, FieldType.INT32)
    frame = encode_request(method_hash("add"), 1, (100, 200), schema)
    assert deserialize(frame[ProtocolHead.SIZE:], schema) == (100, 200)


def test_parse_multiple_frames_and_keep_partial():
    first = encode_frame(1, 1, b"x")
    second = encode_frame(2, 2, b"yy")
    third = encode_frame(3, 3, b"zzz")
    buffer = bytearray(first + second + third[:-2])
    frames = parse_protocols(buffer)
    assert frames == [first, second]
    assert bytes(buffer) == third[:-2]
    buffer.extend(third[-2:])
    assert parse_protocols(buffer) == [third]
    assert buffer == bytearray()


def test_parse_short_buffer_returns_nothing():
    buffer = bytearray(b"\x01\x02")
    assert parse_protocols(buffer) == []
    assert buffer == bytearray(b"\x01\x02")


def test_parse_length_over_limit_raises():
    buffer = bytearray(ProtocolHead(0, 0, PROTOCOL_LENGTH_LIMIT).pack())
    with pytest.raises(RpcError) as info:
        parse_protocols(buffer)
    assert info.value.kind is ErrorKind.BAD_PROTOCOL_LENGTH_OVER_LIMIT


def test_parse_length_just_under_limit_waits():
    head = ProtocolHead(0, 0, PROTOCOL_LENGTH_LIMIT - 1).pack()
    buffer = bytearray(head)
    assert parse_protocols(buffer) == []
    assert bytes(buffer) == head


def test_parse_length_shorter_than_head_raises():
    buffer = bytearray(ProtocolHead(0, 0, 4).pack())
    with pytest.raises(RpcError) as info:
        parse_protocols(buffer)
    assert info.value.kind is ErrorKind.BAD_PROTOCOL


def test_method_hash_is_stable_and_distinct():
    assert method_hash("test_method") == method_hash("test_method")
    assert method_hash("add") != method_hash("notify")
    assert 0 <= method_hash("echo") < 2**64


def test_success_reply_has_no_error():
    body = serialize((ReplyType.SUCCESS, 300), (REPLY_TYPE_FIELD, FieldType.INT32))
    assert reply_to_error(body) is None


def test_failed_reply_yields_client_failed():
    body = serialize((ReplyType.FAILED, "method not found!"), (REPLY_TYPE_FIELD, FieldType.STRING))
    err = reply_to_error(body)
    assert err.kind is ErrorKind.CLIENT_FAILED
    assert err.message == "method not found!"


def test_reply_without_type_is_bad_protocol():
    err = reply_to_error(b"")
    assert err.kind is ErrorKind.BAD_PROTOCOL


def test_failed_reply_without_message_is_bad_protocol():
    body = serialize((ReplyType.FAILED,), (REPLY_TYPE_FIELD,))
    err = reply_to_error(body)
    assert err.kind is ErrorKind.BAD_PROTOCOL