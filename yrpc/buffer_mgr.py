"""Per-connection receive buffers."""

from __future__ import annotations

from collections.abc import Hashable

from .errors import ERR_PREFIX, ErrorKind, RpcError


class BufferManager:
    """Holds one growable receive buffer for each connection."""

    def __init__(self) -> None:
        self._buffers: dict[Hashable, bytearray] = {}

    def add(self, conn_id: Hashable, data: bytes | bytearray = b"") -> None:
        """Create the buffer for a connection; raise if it already exists."""
        if conn_id in self._buffers:
            raise RpcError(ERR_PREFIX + "Buffer already exists", ErrorKind.COMM)
        self._buffers[conn_id] = bytearray(data)

    def remove(self, conn_id: Hashable) -> None:
        """Drop a connection's buffer; unknown connections are ignored."""
        self._buffers.pop(conn_id, None)

    def get(self, conn_id: Hashable) -> bytearray | None:
        """Return the live buffer of a connection, or None if it has none."""
        return self._buffers.get(conn_id)

    def __contains__(self, conn_id: object) -> bool:
        return conn_id in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)

    def total_bytes(self) -> int:
        """Total number of bytes held across all buffers."""
        return sum(len(buffer) for buffer in self._buffers.values())