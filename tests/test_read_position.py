"""Tests for ReadPositionTracker auto-scroll and unread decisions."""
import pytest

from services.stream.read_position import ReadPositionTracker, ScrollDecision


class TestReadPositionTracker:
    def test_at_bottom_auto_scrolls(self):
        tracker = ReadPositionTracker(tolerance_px=50)
        assert tracker.on_message_arrival() == ScrollDecision.AUTO_SCROLL
        assert tracker.unread_count == 0
        assert not tracker.show_indicator

    def test_near_bottom_tolerance(self):
        """Sub-threshold distance from the bottom still counts as bottom."""
        tracker = ReadPositionTracker(tolerance_px=50)
        assert tracker.update_viewport(scroll_top=1450, scroll_height=2000, client_height=500)
        assert tracker.update_viewport(scroll_top=1451.5, scroll_height=2000, client_height=500)
        assert not tracker.update_viewport(scroll_top=1449, scroll_height=2000, client_height=500)

    def test_scrolled_up_counts_unread(self):
        tracker = ReadPositionTracker(tolerance_px=50)
        tracker.update_viewport(scroll_top=1000, scroll_height=2000, client_height=500)

        assert tracker.on_message_arrival() == ScrollDecision.MARK_UNREAD
        assert tracker.on_message_arrival() == ScrollDecision.MARK_UNREAD
        assert tracker.unread_count == 2
        assert tracker.show_indicator

    def test_scroll_back_to_bottom_clears(self):
        tracker = ReadPositionTracker(tolerance_px=50)
        tracker.set_viewport_at_bottom(False)
        tracker.on_message_arrival()

        tracker.set_viewport_at_bottom(True)
        assert tracker.unread_count == 0
        assert not tracker.show_indicator

    def test_hidden_document_counts_unread_even_at_bottom(self):
        tracker = ReadPositionTracker()
        tracker.set_document_visible(False)
        assert tracker.on_message_arrival() == ScrollDecision.MARK_UNREAD
        assert tracker.unread_count == 1

    def test_visibility_regained_at_bottom_clears(self):
        tracker = ReadPositionTracker()
        tracker.set_document_visible(False)
        tracker.on_message_arrival()
        tracker.set_document_visible(True)
        assert tracker.unread_count == 0

    def test_visibility_regained_while_scrolled_up_keeps_unread(self):
        tracker = ReadPositionTracker()
        tracker.set_viewport_at_bottom(False)
        tracker.set_document_visible(False)
        tracker.on_message_arrival()
        tracker.set_document_visible(True)
        assert tracker.unread_count == 1

    def test_reaching_bottom_while_hidden_keeps_unread(self):
        tracker = ReadPositionTracker()
        tracker.set_document_visible(False)
        tracker.set_viewport_at_bottom(False)
        tracker.on_message_arrival()
        tracker.set_viewport_at_bottom(True)
        assert tracker.unread_count == 1

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValueError):
            ReadPositionTracker(tolerance_px=-1)
