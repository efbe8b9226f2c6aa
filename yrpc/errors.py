"""Error kinds, reply types and the exception raised by the RPC layer."""

from __future__ import annotations

from enum import IntEnum

ERR_PREFIX = "[yrpc] "


class ErrorKind(IntEnum):
    """Categories of RPC failures."""

    COMM = 0
    METHOD_ALREADY_REGISTERED = 1
    BAD_PROTOCOL = 2
    BAD_PROTOCOL_LENGTH_OVER_LIMIT = 3
    CLIENT_CLOSE = 4
    CLIENT_TIMEOUT = 5
    CLIENT_FAILED = 6
    SERVER_NO_METHOD = 7


class ReplyType(IntEnum):
    """Leading field of every reply.

    A server only ever sends SUCCESS or FAILED; TIMEOUT is raised locally
    by a client.
    """

    SUCCESS = 0
    FAILED = 1
    TIMEOUT = 2


class RpcError(Exception):
    """An RPC failure carrying a message and an :class:`ErrorKind`."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.COMM) -> None:
        super().__init__(message, kind)
        self.message = message
        self.kind = ErrorKind(kind)

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, {self.kind.name})"