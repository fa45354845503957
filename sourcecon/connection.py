"""
Connection engine for SourceCon.

Owns the TCP stream and its lifecycle, feeds received bytes through the
frame codec into the request correlator, and publishes engine events.

    DISCONNECTED --connect()--> CONNECTING --(established)--> CONNECTED
    CONNECTED --(error | remote close | disconnect())--> DISCONNECTED

Each connection attempt runs on its own daemon thread, which opens the
socket and then becomes the reader loop for that socket.
"""

from __future__ import annotations

import select
import socket
import threading
from concurrent.futures import Future
from dataclasses import replace
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .buffer import ReceiveBuffer
from .config import (
    DEFAULT_PORT,
    REAPER_INTERVAL,
    RECV_CHUNK_SIZE,
    SERVERDATA_AUTH,
    SERVERDATA_EXECCOMMAND,
    SERVERDATA_RESPONSE_VALUE,
    ClientConfig,
)
from .correlator import Completion, RequestCorrelator, ResultCallback
from .events import Event, EventBus, Listener
from .exceptions import (
    ConnectionLostError,
    NotConnectedError,
    PacketParseError,
    ReaderThreadError,
    SourceConError,
    TooManyPendingRequestsError,
    TransportError,
)
from .logging_setup import format_block, log, log_debug, log_warning, setup_logging
from .packets import Frame, body_preview, encode, try_decode_one


SocketFactory = Callable[[Tuple[str, int], float], socket.socket]

# Marker for "use the configured request timeout"
_CONFIGURED = object()


class ConnectionState(Enum):
    """Connection state enumeration."""
    DISCONNECTED = auto()  # No stream
    CONNECTING = auto()    # Stream being opened
    CONNECTED = auto()     # Stream open, reader running


class SourceCon:
    """
    Source RCON client engine for one server endpoint.

    Requests return a `concurrent.futures.Future`; an optional callback is
    called with (result, error) when the request completes. Callbacks and
    event listeners run on the reader thread, or on a timer thread for
    requests rejected before anything was sent. They must not block on a
    response: the reader thread is the one that would deliver it, so
    command() raises ReaderThreadError there. Chain requests with send()
    and a callback instead.

    send() and auth() return once the frames are handed to the socket. A
    peer that stops reading stalls only the sending thread; disconnect()
    from any thread still closes the connection and releases it.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        config: Optional[ClientConfig] = None,
        socket_factory: Optional[SocketFactory] = None,
    ):
        if config is None:
            config = ClientConfig(host=host, port=port)
        else:
            config = replace(config, host=host, port=port)
        config.validate()

        self.config = config
        self._socket_factory = socket_factory or socket.create_connection

        self._lock = threading.RLock()
        # Keeps a request and its terminator probe adjacent on the wire
        self._write_lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._sock: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        # Bumped on every connect/disconnect so stale reader threads can tell
        self._generation = 0

        self._buffer = ReceiveBuffer()
        self._correlator = RequestCorrelator(
            max_pending=config.max_pending,
            max_response_size=config.max_response_size,
        )
        self._events = EventBus()

        self._stats = {
            "connects": 0,
            "frames_sent": 0,
            "frames_received": 0,
            "bytes_sent": 0,
            "bytes_received": 0,
        }

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        socket_factory: Optional[SocketFactory] = None,
        configure_logging: bool = True,
    ) -> "SourceCon":
        """
        Build an engine for the endpoint named in `config`.

        Also applies the config's logging settings unless
        configure_logging is False.
        """
        if configure_logging:
            setup_logging(
                log_to_file=config.log_to_file,
                log_level=config.log_level,
            )
        return cls(config.host, config.port, config=config, socket_factory=socket_factory)

    # ---------------- Properties ----------------

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def port(self) -> int:
        return self.config.port

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    # ---------------- Events ----------------

    def subscribe(self, event: Event, listener: Listener) -> Callable[[], None]:
        """Register an event listener; returns an unsubscribe function."""
        return self._events.subscribe(event, listener)

    def unsubscribe(self, event: Event, listener: Listener) -> bool:
        return self._events.unsubscribe(event, listener)

    # ---------------- Lifecycle ----------------

    def connect(self, callback: Optional[Callable[[Optional[BaseException]], None]] = None) -> bool:
        """
        Open the connection in the background.

        Args:
            callback: Called with None on success or the error on failure

        Returns:
            True if a connection attempt was started, False if already
            connecting or connected
        """
        with self._lock:
            if self._state != ConnectionState.DISCONNECTED:
                log_debug(f"[CONN] Already {self._state.name.lower()} to {self._endpoint()}")
                return False
            self._state = ConnectionState.CONNECTING
            self._generation += 1
            generation = self._generation
            self._thread = threading.Thread(
                target=self._run,
                args=(generation, callback),
                name=f"sourcecon-{self._endpoint()}",
                daemon=True,
            )
            thread = self._thread

        log_debug(f"[CONN] Connecting to {self._endpoint()}")
        thread.start()
        return True

    def disconnect(self) -> bool:
        """
        Close the connection.

        Pending requests fail with ConnectionLostError.

        Returns:
            True if a connection was closed, False if already disconnected
        """
        return self._disconnect(None, ConnectionLostError("Disconnected"))

    def close(self, timeout: float = 2.0) -> None:
        """Disconnect and wait for the reader thread to exit."""
        self.disconnect()
        with self._lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def __enter__(self) -> "SourceCon":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _run(self, generation: int, callback) -> None:
        """Connection thread: open the socket, then read until closed."""
        try:
            sock = self._socket_factory((self.host, self.port), self.config.connect_timeout)
        except OSError as e:
            error = TransportError(f"Connection to {self._endpoint()} failed: {e}", self.host, self.port)
            error.__cause__ = e
            with self._lock:
                current = generation == self._generation
                if current:
                    self._state = ConnectionState.DISCONNECTED
                    self._generation += 1
            log_warning(f"[CONN] {error}")
            self._safe_call(callback, error)
            if current:
                self._events.emit(Event.ERROR, error)
            return

        # Reads are gated by select(); writes block normally
        sock.settimeout(None)
        with self._lock:
            aborted = generation != self._generation
            if not aborted:
                self._sock = sock
                self._state = ConnectionState.CONNECTED
                self._buffer.clear()
                self._stats["connects"] += 1

        if aborted:
            self._close_socket(sock)
            self._safe_call(callback, ConnectionLostError("Connection attempt aborted"))
            return

        log(f"[CONN] Connected to {self._endpoint()}")
        if not self._is_current(generation):
            # disconnect() won the race and has already announced DISCONNECT
            self._safe_call(callback, ConnectionLostError("Disconnected before connect completed"))
            return
        self._safe_call(callback, None)
        self._events.emit(Event.CONNECT)
        self._read_loop(sock, generation)

    def _read_loop(self, sock: socket.socket, generation: int) -> None:
        while self._is_current(generation):
            try:
                readable, _, _ = select.select([sock], [], [], REAPER_INTERVAL)
                data = sock.recv(RECV_CHUNK_SIZE) if readable else None
            except (OSError, ValueError) as e:
                if self._is_current(generation):
                    error = TransportError(f"Connection to {self._endpoint()} failed: {e}", self.host, self.port)
                    error.__cause__ = e
                    self._fail_connection(generation, error)
                return

            self._deliver(self._correlator.expire())
            if data is None:
                continue

            if not data:
                if self._is_current(generation):
                    log(f"[CONN] Connection closed by {self._endpoint()}")
                    self._disconnect(generation, ConnectionLostError("Connection closed by server"))
                return

            self._handle_data(generation, data)

    def _handle_data(self, generation: int, data: bytes) -> None:
        """Buffer received bytes and dispatch every complete frame."""
        dispatched: List[Tuple[Frame, List[Completion]]] = []
        error: Optional[PacketParseError] = None

        with self._lock:
            if generation != self._generation:
                return
            self._stats["bytes_received"] += len(data)
            self._buffer.append(data)

            offset = 0
            view = self._buffer.view()
            try:
                while True:
                    try:
                        result = try_decode_one(view, offset, self.config.max_frame_size)
                    except PacketParseError as e:
                        error = e
                        break
                    if result is None:
                        break
                    frame, consumed = result
                    offset += consumed
                    self._stats["frames_received"] += 1
                    log_debug(
                        f"[RCON] >>> size={frame.size}, id={frame.id}, type={frame.type} : "
                        f"{body_preview(frame.body)}"
                    )
                    dispatched.append((frame, self._correlator.on_frame(frame)))
            finally:
                view.release()
            self._buffer.consume(offset)

        for frame, completions in dispatched:
            self._deliver(completions)
            self._events.emit(Event.MESSAGE, frame)

        if error is not None:
            self._fail_connection(generation, error)

    def _fail_connection(self, generation: int, error: SourceConError) -> None:
        log_warning(f"[CONN] {error}")
        self._events.emit(Event.ERROR, error)
        self._disconnect(generation, ConnectionLostError(f"Connection lost: {error}"))

    def _disconnect(self, generation: Optional[int], error: BaseException) -> bool:
        with self._lock:
            if self._state == ConnectionState.DISCONNECTED:
                return False
            if generation is not None and generation != self._generation:
                return False
            sock = self._sock
            self._sock = None
            self._state = ConnectionState.DISCONNECTED
            self._generation += 1
            self._buffer.clear()
            completions = self._correlator.fail_all(error)

        if sock is not None:
            self._close_socket(sock)
        log(f"[CONN] Disconnected from {self._endpoint()}")

        self._deliver(completions)
        self._events.emit(Event.DISCONNECT)
        return True

    # ---------------- Requests ----------------

    def send(
        self,
        body: Union[bytes, str],
        packet_type: int = SERVERDATA_EXECCOMMAND,
        callback: Optional[ResultCallback] = None,
        timeout: Any = _CONFIGURED,
    ) -> Future:
        """
        Send a request and its terminator probe.

        Args:
            body: Command (str is encoded with the configured encoding)
            packet_type: SERVERDATA_EXECCOMMAND or SERVERDATA_AUTH
            callback: Called with (response_bytes, error) on completion
            timeout: Seconds before the request fails; None waits forever,
                default is the configured request_timeout

        Returns:
            Future resolving to the accumulated response bytes
        """
        if isinstance(body, str):
            body = body.encode(self.config.encoding)
        if timeout is _CONFIGURED:
            timeout = self.config.request_timeout

        with self._lock:
            sock = self._sock if self._state == ConnectionState.CONNECTED else None
            if sock is None:
                return self._reject_later(NotConnectedError(), callback, report=True)

            try:
                request_id, terminator_id, future = self._correlator.register(
                    packet_type, callback, timeout
                )
            except TooManyPendingRequestsError as e:
                log_warning(f"[RCON] {e}")
                return self._reject_later(e, callback, report=False)
            generation = self._generation

        frames = [encode(request_id, packet_type, body)]
        log_debug(
            f"[RCON] <<< size={len(frames[0]) - 4}, id={request_id}, type={packet_type} : "
            f"{body_preview(body) if packet_type != SERVERDATA_AUTH else '********'}"
        )
        if packet_type != SERVERDATA_AUTH:
            # Empty probe whose echo marks the end of this response
            frames.append(encode(terminator_id, SERVERDATA_RESPONSE_VALUE, b""))
        data = b"".join(frames)

        # Outside the engine lock; disconnect() shuts the socket down to
        # release a write stalled on a peer that stopped reading
        try:
            with self._write_lock:
                sock.sendall(data)
        except OSError as e:
            if self._is_current(generation):
                error = TransportError(f"Write to {self._endpoint()} failed: {e}", self.host, self.port)
                error.__cause__ = e
                self._fail_connection(generation, error)
            return future

        with self._lock:
            self._stats["frames_sent"] += len(frames)
            self._stats["bytes_sent"] += len(data)
        return future

    def auth(
        self,
        password: Union[bytes, str],
        callback: Optional[ResultCallback] = None,
        timeout: Any = _CONFIGURED,
    ) -> Future:
        """
        Authenticate with the RCON password.

        The future resolves to {} on success and fails with
        AuthenticationError if the server rejects the password.
        """

        def _on_auth(result, error) -> None:
            self._events.emit(Event.AUTH, error)
            if callback is not None:
                callback(result, error)

        return self.send(password, SERVERDATA_AUTH, _on_auth, timeout=timeout)

    def command(self, body: Union[bytes, str], timeout: Any = _CONFIGURED) -> str:
        """
        Execute a command and wait for the complete response text.

        Raises:
            ReaderThreadError: If called from a callback or listener running
                on the reader thread
            SourceConError: If the request fails or times out
        """
        with self._lock:
            on_reader = threading.current_thread() is self._thread
        if on_reader:
            raise ReaderThreadError()
        data = self.send(body, timeout=timeout).result()
        return data.decode(self.config.encoding, errors="replace")

    def _reject_later(
        self,
        error: SourceConError,
        callback: Optional[ResultCallback],
        report: bool,
    ) -> Future:
        """Fail a request that was never sent, off the caller's stack."""
        future: Future = Future()
        future.set_exception(error)

        def _notify() -> None:
            self._safe_call(callback, None, error)
            if report:
                self._events.emit(Event.ERROR, error)

        timer = threading.Timer(0.0, _notify)
        timer.daemon = True
        timer.start()
        return future

    # ---------------- Helpers ----------------

    def _deliver(self, completions: List[Completion]) -> None:
        for completion in completions:
            completion.deliver()

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _endpoint(self) -> str:
        return f"{self.host}:{self.port}"

    @staticmethod
    def _close_socket(sock: socket.socket) -> None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Already closed by the peer
        sock.close()

    @staticmethod
    def _safe_call(callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            log_warning(f"[CONN] Callback error: {e}")

    def stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        with self._lock:
            return {
                **self._stats,
                "state": self._state.name.lower(),
                "buffered_bytes": len(self._buffer),
                **self._correlator.stats(),
            }

    def format_summary(self) -> str:
        """Format connection summary for display."""
        stats = self.stats()
        return format_block(
            f"RCON {self._endpoint()}",
            [
                f"state={stats['state']} | connects={stats['connects']}",
                f"frames={stats['frames_sent']}/{stats['frames_received']} | "
                f"bytes={stats['bytes_sent']}/{stats['bytes_received']}",
                f"pending={stats['pending_requests']} | next_id={stats['next_id']}",
            ],
        )

    def __repr__(self) -> str:
        return f"<SourceCon {self._endpoint()} {self.state.name.lower()}>"
