"""RPC client: issues remote calls and matches replies to callbacks."""

from __future__ import annotations

import asyncio
import datetime
import heapq
import ipaddress
import itertools
import sys
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from .codec import FieldType
from .errors import ERR_PREFIX, ErrorKind, RpcError
from .eventthread import EventThread
from .protocol import ProtocolHead, encode_request, method_hash, parse_protocols
from .remote_caller import CLIENT_CHECK_INTERVAL_MS, CallType, RemoteCaller, ReplyCallback

_READ_SIZE = 65536


class RpcClient:
    """Connects to one :class:`~yrpc.server.RpcServer` over TCP."""

    def __init__(self, io_thread: EventThread) -> None:
        self._io = io_thread
        self._lock = threading.Lock()
        self._seq = 0
        self._pending: dict[int, RemoteCaller] = {}
        self._timeouts: list[RemoteCaller] = []
        self._recv_buffer = bytearray()
        self._writer: asyncio.StreamWriter | None = None
        self._conn_id = 0
        self._conn_ids = itertools.count(1)
        self._endpoint: tuple[str, int] | None = None
        self._connect_timeout = 10000
        self._connection_timeout = 0
        self._on_connect: Callable[[RpcClient], Any] | None = None
        self._idle_timeouts = 0
        self._bytes_sent = 0
        self._send_errors = 0
        self._update_task = io_thread.call_every(CLIENT_CHECK_INTERVAL_MS, self._update)

    def init(
        self,
        ip: str,
        port: int,
        connect_timeout: int = 10000,
        connection_timeout: int = 0,
        on_connect: Callable[[RpcClient], Any] | None = None,
    ) -> None:
        """Start connecting; timeouts are in milliseconds, zero meaning none."""
        try:
            ipaddress.ip_address(ip)
        except ValueError as exc:
            raise RpcError(f"{ERR_PREFIX}[RpcClient] bad address {ip!r}", ErrorKind.COMM) from exc
        self._endpoint = (ip, port)
        self._connect_timeout = connect_timeout
        self._connection_timeout = connection_timeout
        self._on_connect = on_connect
        self._io.submit(self._run_connection())

    def remote_call(
        self,
        method_name: str,
        args: Iterable[Any],
        timeout: int = 0,
        callback: ReplyCallback | None = None,
        schema: Iterable[FieldType] | None = None,
    ) -> int:
        """Call a remote method and return the call's sequence number.

        With a callback, it receives ``(error, body)`` once: on reply, on
        timeout after ``timeout`` ms, or when the connection closes. Without
        one the call expects no reply.
        """
        if not self.is_connected():
            raise RpcError("client not connected!", ErrorKind.CLIENT_CLOSE)
        with self._lock:
            self._seq += 1
            seq = self._seq
        caller = RemoteCaller(timeout if callback else 0, seq, callback)
        frame = encode_request(method_hash(method_name), seq, args, schema)

        with self._lock:
            if seq in self._pending:
                raise RpcError(ERR_PREFIX + "[RpcClient] sequence reused!", ErrorKind.COMM)
            if caller.call_type is CallType.TIMEOUT_REPLY:
                self._pending[seq] = caller
                heapq.heappush(self._timeouts, caller)
        self._send(frame)
        return seq

    def is_connected(self) -> bool:
        writer = self._writer
        return writer is not None and not writer.is_closing()

    def reconnect(self) -> None:
        """Connect again to the address given to :meth:`init`."""
        if self._endpoint is None:
            raise RpcError(ERR_PREFIX + "[RpcClient] client not initialized!", ErrorKind.COMM)
        if self.is_connected():
            raise RpcError(ERR_PREFIX + "[RpcClient] client already connected!", ErrorKind.COMM)
        self._io.submit(self._run_connection())

    def close(self) -> None:
        """Drop the connection and fail every pending call."""
        with self._lock:
            writer, self._writer = self._writer, None
        if writer is not None:
            self._io.call_soon(writer.close)
        self._fail_all()

    def debug_info(self) -> str:
        with self._lock:
            return (
                "RpcClient Debug Info:\n"
                f"  - Current Seq: {self._seq}\n"
                f"  - Reply Caller Map Size: {len(self._pending)}\n"
                f"  - Timeout Queue Size: {len(self._timeouts)}\n"
            )

    def on_error(self, err: RpcError) -> None:
        """Called for every error; override to handle them."""
        now = datetime.datetime.now().isoformat(sep=" ", timespec="milliseconds")
        print(f"{now}[RpcClient::DefaultErr] {err}", file=sys.stderr)

    def on_timeout(self, conn_id: int) -> None:
        """Called when the connection is closed for being idle; counts such closes."""
        with self._lock:
            self._idle_timeouts += 1

    def on_send(self, conn_id: int, err: RpcError | None, length: int) -> None:
        """Called after data has been handed to the connection; tallies bytes and failures."""
        with self._lock:
            if err is None:
                self._bytes_sent += length
            else:
                self._send_errors += 1

    def _send(self, frame: bytes) -> None:
        with self._lock:
            writer, conn_id = self._writer, self._conn_id
        if writer is None:
            raise RpcError("client not connected!", ErrorKind.CLIENT_CLOSE)
        self._io.call_soon(self._write, conn_id, writer, frame)

    def _write(self, conn_id: int, writer: asyncio.StreamWriter, frame: bytes) -> None:
        if writer.is_closing():
            self.on_send(
                conn_id, RpcError("client not connected!", ErrorKind.CLIENT_CLOSE), 0
            )
            return
        writer.write(frame)
        self.on_send(conn_id, None, len(frame))

    async def _run_connection(self) -> None:
        assert self._endpoint is not None
        ip, port = self._endpoint
        try:
            opening = asyncio.open_connection(ip, port)
            if self._connect_timeout > 0:
                reader, writer = await asyncio.wait_for(opening, self._connect_timeout / 1000.0)
            else:
                reader, writer = await opening
        except (OSError, asyncio.TimeoutError) as exc:
            self.on_error(
                RpcError(f"{ERR_PREFIX}[RpcClient] connect to {ip}:{port} failed: {exc!r}",
                         ErrorKind.COMM)
            )
            return

        with self._lock:
            conn_id = next(self._conn_ids)
            self._writer = writer
            self._conn_id = conn_id
            self._recv_buffer.clear()

        if self._on_connect is not None:
            try:
                self._on_connect(self)
            except Exception as exc:
                self.on_error(RpcError(f"{ERR_PREFIX}[RpcClient] on_connect failed: {exc}"))

        try:
            await self._read_loop(conn_id, reader)
        finally:
            with self._lock:
                if self._writer is writer:
                    self._writer = None
            writer.close()
            self._fail_all()

    async def _read_loop(self, conn_id: int, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                if self._connection_timeout > 0:
                    data = await asyncio.wait_for(
                        reader.read(_READ_SIZE), self._connection_timeout / 1000.0
                    )
                else:
                    data = await reader.read(_READ_SIZE)
            except asyncio.TimeoutError:
                self.on_timeout(conn_id)
                return
            except OSError as exc:
                self.on_error(RpcError(f"{ERR_PREFIX}[RpcClient] read failed: {exc}"))
                return
            if not data:
                return
            self._on_recv(data)

    def _on_recv(self, data: bytes) -> None:
        with self._lock:
            self._recv_buffer.extend(data)
            try:
                frames = parse_protocols(self._recv_buffer)
            except RpcError as exc:
                error = exc
            else:
                error = None
        if error is not None:
            self.on_error(error)
            return

        for frame in frames:
            head = ProtocolHead.unpack(frame)
            self._on_reply(head.call_seq, frame[ProtocolHead.SIZE:])

    def _on_reply(self, seq: int, body: bytes) -> None:
        with self._lock:
            caller = self._pending.pop(seq, None)
        if caller is None:
            return
        try:
            err = caller.reply(body, None)
        except Exception as exc:
            self.on_error(RpcError(f"{ERR_PREFIX}[RpcClient] reply callback failed: {exc}"))
            return
        if err is not None:
            self.on_error(err)

    def _fail_all(self) -> None:
        with self._lock:
            callers = list(self._pending.values())
            self._pending.clear()
        for caller in callers:
            try:
                caller.reply(
                    b"",
                    RpcError(
                        ERR_PREFIX + "[RpcClient] client is closed! remote call failed!",
                        ErrorKind.CLIENT_CLOSE,
                    ),
                )
            except Exception as exc:
                self.on_error(RpcError(f"{ERR_PREFIX}[RpcClient] reply callback failed: {exc}"))

    def _update(self) -> None:
        now = time.monotonic()
        expired: list[RemoteCaller] = []
        with self._lock:
            while self._timeouts and self._timeouts[0].deadline <= now:
                caller = heapq.heappop(self._timeouts)
                if caller.replied:
                    continue
                self._pending.pop(caller.seq, None)
                expired.append(caller)
        for caller in expired:
            try:
                caller.reply(
                    b"",
                    RpcError(ERR_PREFIX + "[RpcClient] reply is timeout!", ErrorKind.CLIENT_TIMEOUT),
                )
            except Exception as exc:
                self.on_error(RpcError(f"{ERR_PREFIX}[RpcClient] reply callback failed: {exc}"))