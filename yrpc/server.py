"""RPC server with dynamically registered methods over long-lived TCP connections."""

from __future__ import annotations

import asyncio
import datetime
import itertools
import socket
import sys
import threading
from collections.abc import Callable, Iterable
from typing import Any

from .buffer_mgr import BufferManager
from .codec import FieldType
from .errors import ERR_PREFIX, ErrorKind, ReplyType, RpcError
from .eventthread import EventThread
from .protocol import (
    REPLY_TYPE_FIELD,
    ProtocolHead,
    encode_frame,
    encode_request,
    method_hash,
    parse_protocols,
)

RpcMethod = Callable[["RpcServer", int, int, bytes], None]
"""A method receives (server, conn_id, seq, body) and raises to report failure."""

_READ_SIZE = 65536


async def _read_chunk(reader: asyncio.StreamReader, timeout_ms: int) -> bytes:
    if timeout_ms > 0:
        return await asyncio.wait_for(reader.read(_READ_SIZE), timeout_ms / 1000.0)
    return await reader.read(_READ_SIZE)


class RpcServer:
    """Serves registered methods on an :class:`EventThread`.

    Method registration is thread-safe and may happen at any time.
    """

    def __init__(self, io_thread: EventThread) -> None:
        self._io = io_thread
        self._lock = threading.Lock()
        self._methods: dict[int, RpcMethod] = {}
        self._buffers = BufferManager()
        self._connections: dict[int, asyncio.StreamWriter] = {}
        self._conn_ids = itertools.count(1)
        self._listener: socket.socket | None = None
        self._connection_timeout = 0
        self._peers: dict[int, Any] = {}
        self._idle_timeouts = 0
        self._bytes_sent = 0
        self._send_errors = 0

    @property
    def address(self) -> tuple[Any, ...] | None:
        """The bound listening address, or None before :meth:`init`."""
        return self._listener.getsockname() if self._listener is not None else None

    def init(self, ip: str, port: int, connection_timeout: int = 10000) -> None:
        """Bind and start listening; idle connections close after ``connection_timeout`` ms."""
        if self._listener is not None:
            raise RpcError(ERR_PREFIX + "[RpcServer] already listening!", ErrorKind.COMM)
        try:
            sock = socket.create_server((ip, port))
        except OSError as exc:
            raise RpcError(
                f"{ERR_PREFIX}[RpcServer] listen on {ip}:{port} failed: {exc}", ErrorKind.COMM
            ) from exc
        sock.setblocking(False)
        self._listener = sock
        self._connection_timeout = connection_timeout
        self._io.submit(self._serve(sock))

    async def _serve(self, sock: socket.socket) -> None:
        server = await asyncio.start_server(self._handle_connection, sock=sock)
        try:
            await server.serve_forever()
        finally:
            server.close()

    def register_method(self, name: str, method: RpcMethod) -> None:
        """Register ``method`` under ``name``; raise if the name is taken."""
        key = method_hash(name)
        with self._lock:
            if key in self._methods:
                raise RpcError(
                    ERR_PREFIX + "[RpcServer] repeat regist method!",
                    ErrorKind.METHOD_ALREADY_REGISTERED,
                )
            self._methods[key] = method

    def unregister_method(self, name: str) -> None:
        """Remove a registered method; raise if it is not registered."""
        with self._lock:
            if self._methods.pop(method_hash(name), None) is None:
                raise RpcError(ERR_PREFIX + "[RpcServer] method not registered!", ErrorKind.COMM)

    def do_reply(
        self,
        conn_id: int,
        seq: int,
        values: Iterable[Any],
        schema: Iterable[FieldType] | None = None,
    ) -> None:
        """Send a reply whose body is ``values``; the first must be a :class:`ReplyType`."""
        self._send(conn_id, encode_request(0, seq, values, schema))

    def do_reply_raw(self, conn_id: int, seq: int, body: bytes) -> None:
        """Send a reply whose body is already encoded."""
        self._send(conn_id, encode_frame(0, seq, body))

    def close(self, conn_id: int) -> None:
        """Close one connection."""
        with self._lock:
            writer = self._connections.get(conn_id)
        if writer is None:
            raise RpcError(ERR_PREFIX + "[RpcServer] connection not found!", ErrorKind.COMM)
        self._io.call_soon(writer.close)

    def debug_info(self) -> str:
        with self._lock:
            return (
                "RpcServer Debug Info:\n"
                f"  Method Map Size: {len(self._methods)}\n"
                f"  Buffer Map Size: {len(self._buffers)}\n"
                f"  Buffer Total Size: {self._buffers.total_bytes()}\n"
            )

    def on_error(self, err: RpcError) -> None:
        """Called for every error; override to handle them."""
        now = datetime.datetime.now().isoformat(sep=" ", timespec="milliseconds")
        print(f"{now}[RpcServer::DefaultErr] {err}", file=sys.stderr)

    def on_timeout(self, conn_id: int) -> None:
        """Called when a connection is closed for being idle; counts such closes."""
        with self._lock:
            self._idle_timeouts += 1

    def on_send(self, conn_id: int, err: RpcError | None, length: int) -> None:
        """Called after data has been handed to a connection; tallies bytes and failures."""
        with self._lock:
            if err is None:
                self._bytes_sent += length
            else:
                self._send_errors += 1

    def on_accept(self, conn_id: int, addr: Any) -> None:
        """Called when a connection is accepted; remembers the peer address."""
        with self._lock:
            self._peers[conn_id] = addr

    def _send(self, conn_id: int, frame: bytes) -> None:
        with self._lock:
            writer = self._connections.get(conn_id)
        if writer is None:
            raise RpcError(ERR_PREFIX + "[RpcServer] connection not found!", ErrorKind.COMM)
        self._io.call_soon(self._write, conn_id, writer, frame)

    def _write(self, conn_id: int, writer: asyncio.StreamWriter, frame: bytes) -> None:
        if writer.is_closing():
            self.on_send(
                conn_id, RpcError(ERR_PREFIX + "[RpcServer] connection is closed!", ErrorKind.COMM), 0
            )
            return
        writer.write(frame)
        self.on_send(conn_id, None, len(frame))

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        conn_id = next(self._conn_ids)
        with self._lock:
            self._buffers.add(conn_id)
            self._connections[conn_id] = writer
        self.on_accept(conn_id, writer.get_extra_info("peername"))
        try:
            await self._read_loop(conn_id, reader)
        finally:
            with self._lock:
                self._connections.pop(conn_id, None)
                self._buffers.remove(conn_id)
                self._peers.pop(conn_id, None)
            writer.close()

    async def _read_loop(self, conn_id: int, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                data = await _read_chunk(reader, self._connection_timeout)
            except asyncio.TimeoutError:
                self.on_timeout(conn_id)
                return
            except OSError as exc:
                self.on_error(
                    RpcError(f"{ERR_PREFIX}[RpcServer] read failed: {exc}", ErrorKind.COMM)
                )
                return
            if not data or not self._on_recv(conn_id, data):
                return

    def _on_recv(self, conn_id: int, data: bytes) -> bool:
        """Handle received bytes; return False when the connection must close."""
        frames: list[bytes] = []
        error: RpcError | None = None
        with self._lock:
            buffer = self._buffers.get(conn_id)
            if buffer is None:
                error = RpcError(ERR_PREFIX + "[RpcServer] buffer not found!", ErrorKind.COMM)
            else:
                buffer.extend(data)
                try:
                    frames = parse_protocols(buffer)
                except RpcError as exc:
                    error = exc

        if error is not None:
            self.on_error(error)
            return error.kind is not ErrorKind.BAD_PROTOCOL_LENGTH_OVER_LIMIT

        for frame in frames:
            try:
                self._on_remote_call(conn_id, frame)
            except RpcError as exc:
                self.on_error(exc)
        return True

    def _on_remote_call(self, conn_id: int, frame: bytes) -> None:
        head = ProtocolHead.unpack(frame)
        with self._lock:
            method = self._methods.get(head.method_hash)

        error: RpcError | None = None
        if method is None:
            error = RpcError(
                ERR_PREFIX + "[RpcServer] method not found!", ErrorKind.SERVER_NO_METHOD
            )
        else:
            try:
                method(self, conn_id, head.call_seq, frame[ProtocolHead.SIZE:])
            except RpcError as exc:
                error = exc
            except Exception as exc:
                error = RpcError(f"{ERR_PREFIX}[RpcServer] method failed: {exc}", ErrorKind.COMM)

        if error is not None:
            self.do_reply(
                conn_id,
                head.call_seq,
                (ReplyType.FAILED, str(error)),
                (REPLY_TYPE_FIELD, FieldType.STRING),
            )