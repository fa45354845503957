"""
Packet definitions for SourceCon.

Defines the Scapy layer for the RCON wire frame and the stream codec that
cuts complete frames out of the receive buffer.

Wire format (all integers signed 32-bit little-endian):

    size | id | type | body | 0x00 0x00

`size` counts id + type + body + the two trailing nul bytes, never itself.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from scapy.packet import Packet
from scapy.fields import (
    LESignedIntField,
    StrLenField,
    StrFixedLenField,
)

from .config import (
    HEADER_SIZE,
    MAX_FRAME_SIZE,
    MIN_PACKET_SIZE,
    SIZE_FIELD_LEN,
    TRAILER,
)
from .exceptions import FrameTooLargeError, MalformedFrameError


_HEADER = struct.Struct("<iii")

BytesLike = Union[bytes, bytearray, memoryview]


class RconPacket(Packet):
    """
    Source RCON packet.

    Fields:
        size: Byte count of id + type + body + trailer (computed on build)
        id: Client-chosen packet identifier, echoed by the server
        type: Packet type (SERVERDATA_*)
        body: Payload bytes without the trailing nul bytes
        trailer: Two nul bytes
    """

    name = "RCON"
    fields_desc = [
        LESignedIntField("size", None),
        LESignedIntField("id", 0),
        LESignedIntField("type", 0),
        StrLenField("body", b"", length_from=lambda pkt: pkt.size - MIN_PACKET_SIZE),
        StrFixedLenField("trailer", TRAILER, 2),
    ]

    def post_build(self, pkt: bytes, pay: bytes) -> bytes:
        if self.size is None:
            pkt = struct.pack("<i", len(pkt) - SIZE_FIELD_LEN) + pkt[SIZE_FIELD_LEN:]
        return pkt + pay


@dataclass(frozen=True)
class Frame:
    """A decoded wire frame."""

    size: int
    id: int
    type: int
    body: bytes

    def as_dict(self) -> dict:
        return {"size": self.size, "id": self.id, "type": self.type, "body": self.body}


def encode(packet_id: int, packet_type: int, body: bytes = b"") -> bytes:
    """
    Encode one frame.

    Produces 4 + 10 + len(body) bytes.
    """
    return bytes(RconPacket(id=packet_id, type=packet_type, body=bytes(body)))


def try_decode_one(
    data: BytesLike,
    offset: int = 0,
    max_frame_size: int = MAX_FRAME_SIZE,
) -> Optional[Tuple[Frame, int]]:
    """
    Decode the frame starting at `offset`, if it is complete.

    Args:
        data: Buffered stream bytes
        offset: Position of the frame's size field
        max_frame_size: Largest acceptable `size` value

    Returns:
        (frame, bytes_consumed), or None if more data is needed

    Raises:
        MalformedFrameError: If `size` is smaller than an empty packet
        FrameTooLargeError: If `size` exceeds max_frame_size
    """
    available = len(data) - offset
    if available < HEADER_SIZE:
        return None

    size, _, _ = _HEADER.unpack_from(data, offset)
    if size < MIN_PACKET_SIZE:
        raise MalformedFrameError(size, MIN_PACKET_SIZE)
    if size > max_frame_size:
        raise FrameTooLargeError(size, max_frame_size)

    total = SIZE_FIELD_LEN + size
    if available < total:
        return None  # Need more data

    pkt = RconPacket(bytes(data[offset : offset + total]))
    frame = Frame(size=pkt.size, id=pkt.id, type=pkt.type, body=bytes(pkt.body))
    return frame, total


def decode_all(
    data: BytesLike,
    max_frame_size: int = MAX_FRAME_SIZE,
) -> Tuple[List[Frame], int]:
    """
    Decode every complete frame at the front of `data`.

    Returns:
        (frames, bytes_consumed); trailing partial frame bytes are left alone
    """
    frames: List[Frame] = []
    offset = 0
    while True:
        result = try_decode_one(data, offset, max_frame_size)
        if result is None:
            break
        frame, consumed = result
        frames.append(frame)
        offset += consumed
    return frames, offset


def body_preview(body: bytes, max_len: int = 120) -> str:
    """Render a body for log output."""
    text = body[:max_len].decode("ascii", errors="replace")
    text = text.replace("\n", "\\n").replace("\x00", "\\x00")
    if len(body) > max_len:
        text += f"... ({len(body)} bytes)"
    return text
