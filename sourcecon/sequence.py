"""
Packet id allocation for SourceCon.

Ids are signed 32-bit values that wrap around. `0` and `-1` are never
handed out: servers use `-1` to signal a rejected password, and some use
`0` for unsolicited packets.
"""

from .config import FIRST_PACKET_ID, RESERVED_IDS


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def next_id(current: int) -> int:
    """Return the id following `current`, skipping reserved values."""
    nid = _to_int32(current + 1)
    while nid in RESERVED_IDS:
        nid = _to_int32(nid + 1)
    return nid


class PacketIdAllocator:
    """Running packet id counter for one connection."""

    def __init__(self, start: int = FIRST_PACKET_ID):
        if _to_int32(start) in RESERVED_IDS:
            start = next_id(start)
        self._current = _to_int32(start)

    def peek(self) -> int:
        """Id the next allocate() call will return."""
        return self._current

    def allocate(self) -> int:
        """Return the current id and advance the counter."""
        pid = self._current
        self._current = next_id(pid)
        return pid
