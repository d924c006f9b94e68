"""Stream failure taxonomy.

Connection-level failures are surfaced as state and passed to error
callbacks; they are not raised to callers of the stream API.
"""

from typing import Optional


class StreamError(Exception):
    """Base class for stream connection failures."""

    def __init__(self, message: str, *, room_id: Optional[str] = None):
        super().__init__(message)
        self.room_id = room_id


class TransportError(StreamError):
    """Connection dropped, refused, or answered with a non-SSE response."""

    def __init__(
        self,
        message: str,
        *,
        room_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, room_id=room_id)
        self.status_code = status_code


class HeartbeatTimeout(StreamError):
    """No frame arrived within the heartbeat window."""


class ReconnectExhausted(StreamError):
    """Automatic reconnection gave up; a manual reconnect is required."""

    def __init__(self, message: str, *, room_id: Optional[str] = None, attempts: int = 0):
        super().__init__(message, room_id=room_id)
        self.attempts = attempts


class StreamAlreadyOpen(StreamError):
    """connect() was called on an instance that is not idle."""
