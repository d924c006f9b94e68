"""Auto-scroll versus unread-indicator decisions for a rendered message list.

Host UIs feed two independent signals: whether the viewport sits near the
bottom of the list, and whether the document is visible. Nothing here
knows about a specific rendering surface.
"""

from __future__ import annotations

from enum import Enum

from shared.config.stream import StreamSettings
from shared.logging.logger import get_logger

log = get_logger("stream.read_position")


class ScrollDecision(str, Enum):
    AUTO_SCROLL = "auto_scroll"
    MARK_UNREAD = "mark_unread"


class ReadPositionTracker:
    def __init__(self, tolerance_px: int = StreamSettings.near_bottom_tolerance_px):
        if tolerance_px < 0:
            raise ValueError("tolerance_px must not be negative")

        self.tolerance_px = tolerance_px
        self._at_bottom = True
        self._document_visible = True
        self._unread = 0

    # ------------------------------------------------------------------

    @property
    def at_bottom(self) -> bool:
        return self._at_bottom

    @property
    def document_visible(self) -> bool:
        return self._document_visible

    @property
    def unread_count(self) -> int:
        return self._unread

    @property
    def show_indicator(self) -> bool:
        return self._unread > 0

    # ------------------------------------------------------------------
    # Input signals
    # ------------------------------------------------------------------

    def is_near_bottom(self, scroll_top: float, scroll_height: float, client_height: float) -> bool:
        distance = scroll_height - scroll_top - client_height
        return distance <= self.tolerance_px

    def update_viewport(self, scroll_top: float, scroll_height: float, client_height: float) -> bool:
        """Feed raw scroll metrics; returns the resulting at-bottom flag."""
        at_bottom = self.is_near_bottom(scroll_top, scroll_height, client_height)
        self.set_viewport_at_bottom(at_bottom)
        return at_bottom

    def set_viewport_at_bottom(self, at_bottom: bool) -> None:
        self._at_bottom = bool(at_bottom)
        if self._at_bottom and self._document_visible:
            self._clear()

    def set_document_visible(self, visible: bool) -> None:
        self._document_visible = bool(visible)
        if self._document_visible and self._at_bottom:
            self._clear()

    # ------------------------------------------------------------------

    def on_message_arrival(self) -> ScrollDecision:
        if self._at_bottom and self._document_visible:
            return ScrollDecision.AUTO_SCROLL

        self._unread += 1
        log.debug(f"Unread message count → {self._unread}")
        return ScrollDecision.MARK_UNREAD

    def reset(self) -> None:
        self._clear()

    def _clear(self) -> None:
        if self._unread:
            log.debug(f"Clearing {self._unread} unread message(s)")
        self._unread = 0


__all__ = ["ReadPositionTracker", "ScrollDecision"]
