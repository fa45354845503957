"""
Pytest configuration and fixtures for SourceCon tests.
"""

import pytest
import os
import socket
import sys
import threading

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sourcecon.connection import SourceCon
from sourcecon.packets import Frame, encode, try_decode_one


WAIT = 2.0  # Seconds to wait for cross-thread results


class FakeServer:
    """
    Server end of a socketpair, handed to the engine via socket_factory.
    """

    def __init__(self):
        self.client_sock, self.server_sock = socket.socketpair()
        self.server_sock.settimeout(WAIT)
        self.connect_calls = []
        self._buffer = bytearray()

    def factory(self, address, timeout):
        self.connect_calls.append((address, timeout))
        return self.client_sock

    def read_frames(self, count: int):
        """Read exactly `count` frames written by the client."""
        frames = []
        while len(frames) < count:
            result = try_decode_one(self._buffer)
            if result is None:
                chunk = self.server_sock.recv(4096)
                if not chunk:
                    raise EOFError("Client closed the connection")
                self._buffer += chunk
                continue
            frame, consumed = result
            del self._buffer[:consumed]
            frames.append(frame)
        return frames

    def reply(self, packet_id: int, packet_type: int, body: bytes = b"") -> None:
        self.server_sock.sendall(encode(packet_id, packet_type, body))

    def send_raw(self, data: bytes) -> None:
        self.server_sock.sendall(data)

    def close(self) -> None:
        self.server_sock.close()
        self.client_sock.close()


class Recorder:
    """Collects listener/callback invocations across threads."""

    def __init__(self):
        self.calls = []
        self.event = threading.Event()

    def __call__(self, *args):
        self.calls.append(args)
        self.event.set()

    def wait(self, timeout: float = WAIT) -> bool:
        return self.event.wait(timeout)


@pytest.fixture
def fake_server():
    """A socketpair-backed fake RCON server."""
    server = FakeServer()
    yield server
    server.close()


@pytest.fixture
def engine(fake_server):
    """An engine wired to the fake server, not yet connected."""
    eng = SourceCon("127.0.0.1", 27015, socket_factory=fake_server.factory)
    yield eng
    eng.close()


@pytest.fixture
def connected(engine):
    """An engine with an established connection."""
    done = Recorder()
    assert engine.connect(done)
    assert done.wait()
    assert done.calls == [(None,)]
    return engine


@pytest.fixture
def recorder():
    return Recorder()


def make_frame(packet_id: int, packet_type: int, body: bytes = b"") -> Frame:
    """Build a decoded frame as the codec would produce it."""
    return Frame(size=10 + len(body), id=packet_id, type=packet_type, body=body)
