"""
Receive buffer for SourceCon.

Holds stream bytes that have not yet formed complete frames. Bytes are
appended to a growable arena and consumed by advancing a read cursor; the
consumed prefix is only dropped once it dominates the arena.
"""

from __future__ import annotations


# Compact once at least this many consumed bytes sit in front of the cursor
COMPACT_THRESHOLD = 64 * 1024


class ReceiveBuffer:
    """
    Append-only byte arena with a read offset.

    Not thread-safe; the owning connection serializes access.
    """

    def __init__(self, compact_threshold: int = COMPACT_THRESHOLD):
        self._data = bytearray()
        self._offset = 0
        self._compact_threshold = compact_threshold

    def append(self, chunk: bytes) -> None:
        """Add bytes received from the stream."""
        self._data += chunk

    def view(self) -> memoryview:
        """Unconsumed bytes, without copying."""
        return memoryview(self._data)[self._offset :]

    def consume(self, count: int) -> None:
        """Advance the read cursor past `count` bytes."""
        if count < 0 or count > len(self):
            raise ValueError(f"Cannot consume {count} bytes from buffer of {len(self)}")
        self._offset += count
        if self._offset == len(self._data):
            self._data.clear()
            self._offset = 0
        elif self._offset >= self._compact_threshold and self._offset * 2 >= len(self._data):
            del self._data[: self._offset]
            self._offset = 0

    def clear(self) -> None:
        self._data.clear()
        self._offset = 0

    def __len__(self) -> int:
        return len(self._data) - self._offset

    def __bool__(self) -> bool:
        return len(self) > 0
