"""
Consumer-facing wiring for a room stream.

MessageStreamAdapter owns the StreamConnection for a subscription and
exposes its outcome as observable state:

- messages, participant_count (from the ingestion pipeline)
- is_connected, is_connecting, last_error (from connection callbacks)
- unread_count, show_unread_indicator (from the read-position tracker)

The subscription is keyed on (room_id, enabled). Callback changes are
stored in LatestCallback cells and never restart the connection.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from services.stream.connection import ConnectionState, StreamConnection
from services.stream.errors import StreamError
from services.stream.ingest import IngestionPipeline
from services.stream.read_position import ReadPositionTracker, ScrollDecision
from services.stream.sse_channel import ChannelFactory
from shared.chat.events import ChatMessage, StreamEvent
from shared.config.stream import StreamSettings
from shared.logging.logger import get_logger

log = get_logger("stream.adapter")

_UNSET: Any = object()


class LatestCallback:
    """
    Single-slot cell holding the most recent callback.

    Read at dispatch time, so replacing the callback affects the next
    event without touching whoever holds the cell.
    """

    def __init__(self, callback: Optional[Callable[..., Any]] = None):
        self.current = callback

    def set(self, callback: Optional[Callable[..., Any]]) -> None:
        self.current = callback

    def __call__(self, *args: Any) -> None:
        callback = self.current
        if callback is not None:
            try:
                callback(*args)
            except Exception:
                log.exception("Stream callback failed")


@dataclass(frozen=True)
class StreamSnapshot:
    room_id: str
    messages: Tuple[ChatMessage, ...]
    is_connected: bool
    is_connecting: bool
    last_error: Optional[StreamError]
    participant_count: int
    unread_count: int
    show_unread_indicator: bool
    state: ConnectionState


Listener = Callable[[StreamSnapshot], None]


class MessageStreamAdapter:
    def __init__(
        self,
        room_id: str,
        *,
        channel_factory: ChannelFactory,
        enabled: bool = True,
        on_connect: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[StreamError], None]] = None,
        on_auto_scroll: Optional[Callable[[ChatMessage], None]] = None,
        settings: Optional[StreamSettings] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._room_id = str(room_id or "")
        self._enabled = bool(enabled)
        self._channel_factory = channel_factory
        self._settings = settings or StreamSettings()
        self._loop = loop

        self._on_connect = LatestCallback(on_connect)
        self._on_error = LatestCallback(on_error)
        self._on_auto_scroll = LatestCallback(on_auto_scroll)

        self._pipeline = IngestionPipeline(self._room_id)
        self._tracker = ReadPositionTracker(self._settings.near_bottom_tolerance_px)

        self._connection: Optional[StreamConnection] = None
        self._is_connected = False
        self._is_connecting = False
        self._last_error: Optional[StreamError] = None

        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def room_id(self) -> str:
        return self._room_id

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return self._pipeline.messages

    @property
    def participant_count(self) -> int:
        return self._pipeline.participant_count

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def is_connecting(self) -> bool:
        return self._is_connecting

    @property
    def last_error(self) -> Optional[StreamError]:
        return self._last_error

    @property
    def unread_count(self) -> int:
        return self._tracker.unread_count

    @property
    def show_unread_indicator(self) -> bool:
        return self._tracker.show_indicator

    @property
    def connection(self) -> Optional[StreamConnection]:
        return self._connection

    def snapshot(self) -> StreamSnapshot:
        state = (
            self._connection.get_state()
            if self._connection is not None
            else ConnectionState.IDLE
        )
        return StreamSnapshot(
            room_id=self._room_id,
            messages=self._pipeline.messages,
            is_connected=self._is_connected,
            is_connecting=self._is_connecting,
            last_error=self._last_error,
            participant_count=self._pipeline.participant_count,
            unread_count=self._tracker.unread_count,
            show_unread_indicator=self._tracker.show_indicator,
            state=state,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._establish()

    def configure(
        self,
        *,
        room_id: Any = _UNSET,
        enabled: Any = _UNSET,
        on_connect: Any = _UNSET,
        on_error: Any = _UNSET,
        on_auto_scroll: Any = _UNSET,
    ) -> None:
        """
        Update adapter configuration.

        Only a change of room_id or enabled restarts the subscription.
        """
        if on_connect is not _UNSET:
            self._on_connect.set(on_connect)
        if on_error is not _UNSET:
            self._on_error.set(on_error)
        if on_auto_scroll is not _UNSET:
            self._on_auto_scroll.set(on_auto_scroll)

        new_room = self._room_id if room_id is _UNSET else str(room_id or "")
        new_enabled = self._enabled if enabled is _UNSET else bool(enabled)

        if (new_room, new_enabled) == (self._room_id, self._enabled):
            return

        log.info(
            f"Subscription changed (room_id={self._room_id!r} → {new_room!r}, "
            f"enabled={self._enabled} → {new_enabled})"
        )

        self._teardown()
        if new_room != self._room_id:
            self._pipeline = IngestionPipeline(new_room)
            self._tracker.reset()
            self._last_error = None

        self._room_id = new_room
        self._enabled = new_enabled
        self._establish()

    def reconnect(self) -> None:
        """
        Tear down and rebuild the stream with empty history.

        Messages sent while the stream was down are not recovered.
        """
        if not self._enabled or not self._room_id:
            log.warning(
                f"Reconnect ignored (room_id={self._room_id!r}, enabled={self._enabled})"
            )
            return

        log.info(f"[{self._room_id}] Manual reconnect requested")
        self._teardown()
        self._pipeline.reset()
        self._tracker.reset()
        self._last_error = None
        self._connect_new()
        self._notify()

    def close(self) -> None:
        self._teardown()
        self._is_connected = False
        self._is_connecting = False
        self._notify()

    # ------------------------------------------------------------------
    # Read-position signals
    # ------------------------------------------------------------------

    def update_viewport(self, scroll_top: float, scroll_height: float, client_height: float) -> None:
        before = self._tracker.unread_count
        self._tracker.update_viewport(scroll_top, scroll_height, client_height)
        if self._tracker.unread_count != before:
            self._notify()

    def set_viewport_at_bottom(self, at_bottom: bool) -> None:
        before = self._tracker.unread_count
        self._tracker.set_viewport_at_bottom(at_bottom)
        if self._tracker.unread_count != before:
            self._notify()

    def set_document_visible(self, visible: bool) -> None:
        before = self._tracker.unread_count
        self._tracker.set_document_visible(visible)
        if self._tracker.unread_count != before:
            self._notify()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _establish(self) -> None:
        if not self._enabled or not self._room_id:
            self._teardown()
            self._is_connected = False
            self._is_connecting = False
            self._notify()
            return

        self._teardown()
        self._connect_new()
        self._notify()

    def _connect_new(self) -> None:
        self._is_connected = False
        self._is_connecting = True

        connection: Optional[StreamConnection] = None

        # Late callbacks from a superseded connection are ignored.
        def on_event(event: StreamEvent) -> None:
            if connection is self._connection:
                self._handle_event(event)

        def on_connect() -> None:
            if connection is self._connection:
                self._handle_connect()

        def on_error(error: StreamError) -> None:
            if connection is self._connection:
                self._handle_error(connection, error)

        connection = StreamConnection(
            self._room_id,
            channel_factory=self._channel_factory,
            on_event=on_event,
            on_error=on_error,
            on_connect=on_connect,
            settings=self._settings,
            loop=self._loop,
        )
        self._connection = connection
        connection.connect()

    def _teardown(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.disconnect()
        self._is_connected = False
        self._is_connecting = False

    def _handle_event(self, event: StreamEvent) -> None:
        count_before = self._pipeline.participant_count
        message = self._pipeline.ingest(event)

        if message is not None:
            if self._tracker.on_message_arrival() == ScrollDecision.AUTO_SCROLL:
                self._on_auto_scroll(message)
            self._notify()
        elif self._pipeline.participant_count != count_before:
            self._notify()

    def _handle_connect(self) -> None:
        self._is_connected = True
        self._is_connecting = False
        self._last_error = None
        self._notify()
        self._on_connect()

    def _handle_error(self, connection: StreamConnection, error: StreamError) -> None:
        self._is_connected = False
        # CONNECTING here means a backoff reconnect is pending.
        self._is_connecting = connection.get_state() == ConnectionState.CONNECTING
        self._last_error = error
        self._notify()
        self._on_error(error)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                log.exception(f"[{self._room_id}] Stream listener failed")


__all__ = ["LatestCallback", "MessageStreamAdapter", "StreamSnapshot"]
