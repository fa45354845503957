"""
Request/response correlation for SourceCon.

RCON has no end-of-response marker, and a long response is split across
several RESPONSE_VALUE frames that all carry the request's id. After every
command the client sends an empty RESPONSE_VALUE probe with the next id (the
terminator). The server answers requests in order, so the probe's echo can
only arrive after the last fragment of the command it follows; when it shows
up, the command's accumulated body is complete.

Auth requests reserve the following id as well but send no probe: the
server answers them with one distinguishable AUTH_RESPONSE frame, optionally
preceded by an empty RESPONSE_VALUE echo that must be ignored.
"""

from __future__ import annotations

import time
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .config import (
    AUTH_FAILED_ID,
    MAX_PENDING_REQUESTS,
    MAX_RESPONSE_SIZE,
    SERVERDATA_AUTH,
    SERVERDATA_AUTH_RESPONSE,
)
from .exceptions import (
    AuthenticationError,
    RequestTimeoutError,
    ResponseTooLargeError,
    TooManyPendingRequestsError,
)
from .packets import Frame
from .sequence import PacketIdAllocator

logger = logging.getLogger(__name__)


# Callback receives (result, error); exactly one of them is meaningful
ResultCallback = Callable[[Any, Optional[BaseException]], None]


# =============================================================================
# Pending Entries
# =============================================================================

@dataclass
class RealRequest:
    """An issued request awaiting its response."""
    packet_id: int
    packet_type: int
    future: Future
    callback: Optional[ResultCallback] = None
    body: bytearray = field(default_factory=bytearray)
    terminator_id: Optional[int] = None
    sent_at: float = field(default_factory=time.monotonic)
    timeout: Optional[float] = None

    @property
    def is_auth(self) -> bool:
        return self.packet_type == SERVERDATA_AUTH

    def expired(self, now: float) -> bool:
        return self.timeout is not None and now - self.sent_at > self.timeout


@dataclass
class Terminator:
    """Marks that a response to this id completes `target_id`."""
    packet_id: int
    target_id: int


PendingEntry = Union[RealRequest, Terminator]


@dataclass
class Completion:
    """Outcome for one request, delivered after the engine lock is released."""
    request: RealRequest
    result: Any = None
    error: Optional[BaseException] = None

    def deliver(self) -> None:
        """Resolve the future, then run the callback."""
        future = self.request.future
        if not future.done():
            if self.error is not None:
                future.set_exception(self.error)
            else:
                future.set_result(self.result)

        callback = self.request.callback
        if callback is None:
            return
        try:
            callback(self.result, self.error)
        except Exception as e:
            logger.error(f"[CORR] Callback error for request {self.request.packet_id}: {e}")


# =============================================================================
# Correlator
# =============================================================================

class RequestCorrelator:
    """
    Maps outstanding packet ids to pending requests.

    Thread-safe; completions are returned to the caller rather than
    delivered, so user code never runs under the correlator lock.
    """

    def __init__(
        self,
        max_pending: int = MAX_PENDING_REQUESTS,
        max_response_size: int = MAX_RESPONSE_SIZE,
        allocator: Optional[PacketIdAllocator] = None,
    ):
        self._lock = threading.RLock()
        self._ids = allocator or PacketIdAllocator()
        self._pending: Dict[int, PendingEntry] = {}
        self._max_pending = max_pending
        self._max_response_size = max_response_size

        self._stats = {
            "requests_registered": 0,
            "requests_completed": 0,
            "requests_failed": 0,
            "fragments_received": 0,
            "unmatched_frames": 0,
        }

    def register(
        self,
        packet_type: int,
        callback: Optional[ResultCallback] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[int, int, Future]:
        """
        Register a request about to be written.

        Args:
            packet_type: SERVERDATA_AUTH or SERVERDATA_EXECCOMMAND
            callback: Called with (result, error) on completion
            timeout: Seconds before the request fails (None = never)

        Returns:
            Tuple of (request_id, terminator_id, future)

        Raises:
            TooManyPendingRequestsError: If max_pending requests are in flight
        """
        with self._lock:
            if self._real_count() >= self._max_pending:
                raise TooManyPendingRequestsError(self._max_pending)

            request_id = self._ids.allocate()
            terminator_id = self._ids.allocate()

            request = RealRequest(
                packet_id=request_id,
                packet_type=packet_type,
                future=Future(),
                callback=callback,
                terminator_id=terminator_id,
                timeout=timeout,
            )
            request.future.set_running_or_notify_cancel()
            self._pending[request_id] = request
            self._pending[terminator_id] = Terminator(packet_id=terminator_id, target_id=request_id)
            self._stats["requests_registered"] += 1

            return request_id, terminator_id, request.future

    def on_frame(self, frame: Frame) -> List[Completion]:
        """
        Match an inbound frame against pending entries.

        Returns:
            Completions to deliver (possibly empty)
        """
        with self._lock:
            entry = self._pending.get(frame.id)

            if entry is None:
                if frame.id == AUTH_FAILED_ID and frame.type == SERVERDATA_AUTH_RESPONSE:
                    return self._reject_auth()
                self._stats["unmatched_frames"] += 1
                logger.debug(f"[CORR] No pending entry for id={frame.id}")
                return []

            if isinstance(entry, Terminator):
                del self._pending[frame.id]
                target = self._pending.get(entry.target_id)
                if not isinstance(target, RealRequest):
                    return []
                del self._pending[entry.target_id]
                return [self._succeed(target, bytes(target.body))]

            if isinstance(entry, RealRequest):
                if entry.is_auth:
                    # Only the AUTH_RESPONSE frame settles an auth request
                    if frame.type != SERVERDATA_AUTH_RESPONSE:
                        return []
                    self._remove(entry)
                    return [self._succeed(entry, {})]

                self._stats["fragments_received"] += 1
                entry.body += frame.body
                if len(entry.body) > self._max_response_size:
                    size = len(entry.body)
                    self._remove(entry, keep_terminator=True)
                    return [self._fail(entry, ResponseTooLargeError(entry.packet_id, size, self._max_response_size))]
                return []

            raise TypeError(f"Unknown pending entry {entry!r}")

    def _reject_auth(self) -> List[Completion]:
        """Fail the oldest pending auth request after a -1 AUTH_RESPONSE."""
        for entry in self._pending.values():
            if isinstance(entry, RealRequest) and entry.is_auth:
                self._remove(entry)
                logger.warning(f"[CORR] Server rejected auth request {entry.packet_id}")
                return [self._fail(entry, AuthenticationError())]
        self._stats["unmatched_frames"] += 1
        return []

    def expire(self, now: Optional[float] = None) -> List[Completion]:
        """Fail every request whose timeout has elapsed."""
        now = time.monotonic() if now is None else now
        with self._lock:
            expired = [
                entry
                for entry in self._pending.values()
                if isinstance(entry, RealRequest) and entry.expired(now)
            ]
            completions = []
            for entry in expired:
                self._remove(entry)
                completions.append(self._fail(entry, RequestTimeoutError(entry.packet_id, entry.timeout)))
            if completions:
                logger.warning(f"[CORR] {len(completions)} request(s) timed out")
            return completions

    def fail_all(self, error: BaseException) -> List[Completion]:
        """Remove every entry and fail every real request with `error`."""
        with self._lock:
            requests = [e for e in self._pending.values() if isinstance(e, RealRequest)]
            self._pending.clear()
            return [self._fail(r, error) for r in requests]

    def _remove(self, entry: RealRequest, keep_terminator: bool = False) -> None:
        self._pending.pop(entry.packet_id, None)
        if not keep_terminator and entry.terminator_id is not None:
            term = self._pending.get(entry.terminator_id)
            if isinstance(term, Terminator) and term.target_id == entry.packet_id:
                del self._pending[entry.terminator_id]

    def _succeed(self, entry: RealRequest, result: Any) -> Completion:
        self._stats["requests_completed"] += 1
        return Completion(entry, result=result)

    def _fail(self, entry: RealRequest, error: BaseException) -> Completion:
        self._stats["requests_failed"] += 1
        return Completion(entry, error=error)

    def _real_count(self) -> int:
        return sum(1 for e in self._pending.values() if isinstance(e, RealRequest))

    def is_pending(self, packet_id: int) -> bool:
        with self._lock:
            return packet_id in self._pending

    def pending_count(self) -> int:
        """Number of real requests awaiting completion."""
        with self._lock:
            return self._real_count()

    def stats(self) -> Dict[str, int]:
        """Get correlation statistics."""
        with self._lock:
            return {
                **self._stats,
                "pending_requests": self._real_count(),
                "pending_entries": len(self._pending),
                "next_id": self._ids.peek(),
            }
