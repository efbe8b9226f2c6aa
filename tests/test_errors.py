import pickle

import pytest

from yrpc.errors import ErrorKind, ReplyType, RpcError


def test_error_keeps_message_and_kind():
    err = RpcError("reply is timeout!", ErrorKind.CLIENT_TIMEOUT)
    assert str(err) == "reply is timeout!"
    assert err.message == "reply is timeout!"
    assert err.kind is ErrorKind.CLIENT_TIMEOUT


def test_default_kind_is_comm():
    assert RpcError("boom").kind is ErrorKind.COMM


def test_kind_given_as_int_is_normalised():
    err = RpcError("no method", int(ErrorKind.SERVER_NO_METHOD))
    assert err.kind is ErrorKind.SERVER_NO_METHOD


def test_error_can_be_raised_and_caught():
    err = RpcError("closed", ErrorKind.CLIENT_CLOSE)
    assert err.kind is ErrorKind.CLIENT_CLOSE
    with pytest.raises(RpcError) as info:
        raise err
    assert info.value is err
    assert info.value.message == "closed"
    assert str(info.value) == "closed"


def test_error_survives_pickling():
    err = RpcError("bad", ErrorKind.BAD_PROTOCOL)
    restored = pickle.loads(pickle.dumps(err))
    assert restored.message == "bad"
    assert restored.kind is ErrorKind.BAD_PROTOCOL


def test_repr_names_kind():
    assert "CLIENT_FAILED" in repr(RpcError("x", ErrorKind.CLIENT_FAILED))


def test_reply_type_round_trips_through_int():
    assert ReplyType(int(ReplyType.FAILED)) is ReplyType.FAILED
    assert ReplyType.SUCCESS < ReplyType.FAILED < ReplyType.TIMEOUT