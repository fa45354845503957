"""
Custom exceptions for SourceCon.

Provides specific exception types for better error handling and debugging.
"""


class SourceConError(Exception):
    """Base exception for all SourceCon errors."""
    pass


class ConfigError(SourceConError):
    """Configuration value or file is invalid."""
    pass


# ---------------- Connection Errors ----------------

class ConnectionStateError(SourceConError):
    """Base class for errors caused by the connection state."""
    pass


class NotConnectedError(ConnectionStateError):
    """Request issued while no connection is open."""

    def __init__(self, message: str = "Not connected"):
        super().__init__(message)


class ConnectionLostError(ConnectionStateError):
    """Connection closed while a request was still pending."""

    def __init__(self, message: str = "Connection lost"):
        super().__init__(message)


class TransportError(SourceConError):
    """Underlying socket error (refused, reset, DNS failure)."""

    def __init__(self, message: str, host: str = "", port: int = 0):
        super().__init__(message)
        self.host = host
        self.port = port


# ---------------- Protocol Errors ----------------

class ProtocolError(SourceConError):
    """Base class for protocol-related errors."""
    pass


class PacketParseError(ProtocolError):
    """Failed to parse packet structure."""
    pass


class MalformedFrameError(PacketParseError):
    """Frame header carries an impossible size."""

    def __init__(self, size: int, min_size: int):
        super().__init__(f"Frame size {size} is below minimum {min_size}")
        self.size = size
        self.min_size = min_size


class FrameTooLargeError(PacketParseError):
    """Frame header announces more bytes than the configured cap."""

    def __init__(self, size: int, max_size: int):
        super().__init__(f"Frame size {size} exceeds maximum {max_size}")
        self.size = size
        self.max_size = max_size


class ResponseTooLargeError(ProtocolError):
    """Accumulated multi-packet response exceeds the configured cap."""

    def __init__(self, request_id: int, size: int, max_size: int):
        super().__init__(
            f"Response to request {request_id} reached {size} bytes (maximum {max_size})"
        )
        self.request_id = request_id
        self.size = size
        self.max_size = max_size


# ---------------- Request Errors ----------------

class RequestError(SourceConError):
    """Base class for per-request failures."""
    pass


class RequestTimeoutError(RequestError):
    """No complete response arrived before the deadline."""

    def __init__(self, request_id: int, timeout: float):
        super().__init__(f"Request {request_id} timed out after {timeout:.1f}s")
        self.request_id = request_id
        self.timeout = timeout


class TooManyPendingRequestsError(RequestError):
    """Pending request limit reached."""

    def __init__(self, limit: int):
        super().__init__(f"Too many pending requests (limit {limit})")
        self.limit = limit


class AuthenticationError(RequestError):
    """Server rejected the RCON password."""

    def __init__(self, message: str = "Authentication failed (bad password)"):
        super().__init__(message)


class ReaderThreadError(RequestError):
    """Blocking call made from the thread that would have to deliver its result."""

    def __init__(self, operation: str = "command()"):
        super().__init__(
            f"{operation} cannot block on the reader thread; use send() with a callback"
        )
        self.operation = operation
