"""
Room stream connection.

Owns one push channel for one room together with its two timers:

- heartbeat: re-armed on open and on every frame; expiry is a dead stream
- reconnect: linear backoff (base delay x attempt) up to a fixed attempt cap

State machine:

    IDLE -> CONNECTING -> OPEN
    OPEN/CONNECTING -> ERRORED on transport error or heartbeat expiry
    ERRORED -> CONNECTING while a reconnect is scheduled
    ERRORED stays terminal once attempts are exhausted
    any -> CLOSED on disconnect() (terminal)

Everything runs on one event loop; timers are loop.call_later handles.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Optional

from services.stream.errors import (
    HeartbeatTimeout,
    ReconnectExhausted,
    StreamAlreadyOpen,
    StreamError,
)
from services.stream.sse_channel import ChannelFactory, PushChannel
from shared.chat.events import StreamEvent, classify_frame, is_liveness
from shared.config.stream import StreamSettings
from shared.logging.logger import get_logger

log = get_logger("stream.connection")

EventHandler = Callable[[StreamEvent], None]
ErrorHandler = Callable[[StreamError], None]
ConnectHandler = Callable[[], None]


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    ERRORED = "errored"
    CLOSED = "closed"


class StreamConnection:
    """
    Single inbound event stream for a room, with automatic recovery.

    Failures never raise out of this class. They are recorded in
    last_error and reported through on_error.
    """

    def __init__(
        self,
        room_id: str,
        *,
        channel_factory: ChannelFactory,
        on_event: EventHandler,
        on_error: Optional[ErrorHandler] = None,
        on_connect: Optional[ConnectHandler] = None,
        settings: Optional[StreamSettings] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.room_id = str(room_id)
        self.settings = settings or StreamSettings()

        self._channel_factory = channel_factory
        self._on_event = on_event
        self._on_error = on_error
        self._on_connect = on_connect
        self._loop = loop

        self._state = ConnectionState.IDLE
        self._channel: Optional[PushChannel] = None
        self._heartbeat_timer: Optional[asyncio.TimerHandle] = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._manual_close = False
        self._attempts = 0
        self.last_error: Optional[StreamError] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state == ConnectionState.OPEN

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def pending_timers(self) -> int:
        return sum(
            1 for timer in (self._heartbeat_timer, self._reconnect_timer) if timer is not None
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """
        Open the stream. Returns False (and records StreamAlreadyOpen)
        when this instance is not idle.
        """
        if self._channel is not None or self._state != ConnectionState.IDLE:
            log.warning(
                "Stream connection already exists (room_id=%s, state=%s)",
                self.room_id,
                self._state.value,
            )
            self.last_error = StreamAlreadyOpen(
                f"Stream for room {self.room_id} is {self._state.value}; "
                "construct a new connection instead",
                room_id=self.room_id,
            )
            return False

        self._open()
        return True

    def disconnect(self) -> None:
        """Stop the stream and all timers. Idempotent."""
        self._manual_close = True
        self._clear_reconnect_timer()
        self._clear_heartbeat()

        if self._channel is not None:
            log.info("Closing stream connection (room_id=%s)", self.room_id)
        self._teardown_channel()

        self._state = ConnectionState.CLOSED

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _open(self) -> None:
        self._state = ConnectionState.CONNECTING
        channel = self._channel_factory(self.room_id)
        self._channel = channel

        log.info(
            "Connecting to room stream (room_id=%s, attempt=%s)",
            self.room_id,
            self._attempts,
        )

        # Callbacks from a channel that is no longer ours are dropped.
        def on_open() -> None:
            if channel is self._channel:
                self._handle_open()

        def on_frame(data: str) -> None:
            if channel is self._channel:
                self._handle_frame(data)

        def on_error(error: Exception) -> None:
            if channel is self._channel:
                self._handle_failure(error)

        self._reset_heartbeat()
        try:
            channel.open(on_open, on_frame, on_error)
        except Exception as e:
            log.error("Failed to open stream channel (room_id=%s): %s", self.room_id, e)
            if channel is self._channel:
                self._handle_failure(e)

    def _teardown_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            channel.close()

    def _handle_open(self) -> None:
        log.info("Stream connection established (room_id=%s)", self.room_id)
        self._state = ConnectionState.OPEN
        self._attempts = 0
        self.last_error = None
        self._reset_heartbeat()

        if self._on_connect is not None:
            self._on_connect()

    def _handle_frame(self, data: str) -> None:
        self._reset_heartbeat()

        event = classify_frame(data)
        if event is None:
            return

        if is_liveness(event):
            log.debug("Heartbeat ping (room_id=%s)", self.room_id)

        self._on_event(event)

    def _handle_failure(self, error: Exception) -> None:
        if isinstance(error, StreamError):
            stream_error = error
        else:
            stream_error = StreamError(str(error) or type(error).__name__, room_id=self.room_id)

        log.warning("Stream connection error (room_id=%s): %s", self.room_id, stream_error)

        self._clear_heartbeat()
        self._teardown_channel()
        self._state = ConnectionState.ERRORED
        self.last_error = stream_error

        self._schedule_reconnect()

        if self._on_error is not None:
            self._on_error(self.last_error)

    def _schedule_reconnect(self) -> None:
        if self._manual_close:
            log.debug("Manual close, not reconnecting (room_id=%s)", self.room_id)
            return

        max_attempts = self.settings.max_reconnect_attempts
        if self._attempts >= max_attempts:
            log.error(
                "Max reconnection attempts reached (room_id=%s, attempts=%s)",
                self.room_id,
                self._attempts,
            )
            self.last_error = ReconnectExhausted(
                f"Gave up reconnecting to room {self.room_id} after "
                f"{self._attempts} attempt(s): {self.last_error}",
                room_id=self.room_id,
                attempts=self._attempts,
            )
            return

        self._attempts += 1
        delay = self.settings.reconnect_delay(self._attempts)

        log.info(
            "Reconnecting in %.1fs (room_id=%s, attempt=%s/%s)",
            delay,
            self.room_id,
            self._attempts,
            max_attempts,
        )

        self._clear_reconnect_timer()
        self._reconnect_timer = self._get_loop().call_later(delay, self._fire_reconnect)
        self._state = ConnectionState.CONNECTING

    def _fire_reconnect(self) -> None:
        self._reconnect_timer = None
        if self._manual_close:
            return

        self._teardown_channel()
        self._open()

    def _reset_heartbeat(self) -> None:
        self._clear_heartbeat()
        self._heartbeat_timer = self._get_loop().call_later(
            self.settings.heartbeat_timeout_seconds,
            self._fire_heartbeat,
        )

    def _fire_heartbeat(self) -> None:
        self._heartbeat_timer = None
        if self._channel is None:
            return

        log.warning(
            "Heartbeat timeout after %.1fs, reconnecting (room_id=%s)",
            self.settings.heartbeat_timeout_seconds,
            self.room_id,
        )
        self._handle_failure(
            HeartbeatTimeout(
                f"No frame from room {self.room_id} within "
                f"{self.settings.heartbeat_timeout_seconds:.1f}s",
                room_id=self.room_id,
            )
        )

    def _clear_heartbeat(self) -> None:
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None

    def _clear_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None


__all__ = ["ConnectionState", "StreamConnection"]
