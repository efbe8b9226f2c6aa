"""Pending remote calls awaiting a reply or a timeout."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from enum import IntEnum

from .errors import RpcError
from .protocol import reply_to_error

CLIENT_CHECK_INTERVAL_MS = 100
"""How often a client checks its pending calls for timeouts."""

_INT32_MAX = 2**31 - 1

ReplyCallback = Callable[[RpcError | None, bytes], None]


class CallType(IntEnum):
    """Whether a call waits for a reply."""

    TIMEOUT_REPLY = 0
    ONLY_REQ = 1


class RemoteCaller:
    """A single outstanding call; its callback runs at most once.

    ``timeout`` is in milliseconds; zero or less means practically never.
    Callers order by deadline, so they can live in a heap.
    """

    def __init__(self, timeout: int, seq: int, callback: ReplyCallback | None) -> None:
        timeout_ms = timeout if timeout > 0 else _INT32_MAX
        self.deadline = time.monotonic() + timeout_ms / 1000.0
        self.seq = seq
        self.callback = callback
        self.call_type = CallType.TIMEOUT_REPLY if callback else CallType.ONLY_REQ
        self._replied = False
        self._lock = threading.Lock()

    def __lt__(self, other: RemoteCaller) -> bool:
        if not isinstance(other, RemoteCaller):
            return NotImplemented
        return self.deadline < other.deadline

    @property
    def replied(self) -> bool:
        return self._replied

    def _claim(self) -> bool:
        with self._lock:
            if self._replied:
                return False
            self._replied = True
            return True

    def reply(self, body: bytes, error: RpcError | None = None) -> RpcError | None:
        """Deliver the outcome to the callback, once.

        With ``error`` the callback gets it and empty data. Otherwise the
        body is inspected; an error it carries goes to the callback and is
        also returned so the caller can report it.
        """
        if not self._claim() or self.callback is None:
            return None

        if error is not None:
            self.callback(error, b"")
            return None

        carried = reply_to_error(body)
        if carried is not None:
            self.callback(carried, b"")
            return carried

        self.callback(None, bytes(body))
        return None