"""Tests for IngestionPipeline ordering, dedup and presence."""
from shared.chat.events import LIVENESS, classify_frame
from services.stream.ingest import IngestionPipeline
from tests.fakes import chat_frame


def _event(message_id, **kwargs):
    return classify_frame(chat_frame(message_id, **kwargs))


class TestIngest:
    def test_appends_in_arrival_order(self):
        """Arrival order wins over sent_at order."""
        pipeline = IngestionPipeline("room-1")
        pipeline.ingest(_event("m2", timestamp="2025-05-01T20:00:00Z"))
        pipeline.ingest(_event("m1", timestamp="2025-05-01T19:00:00Z"))
        assert [m.message_id for m in pipeline.messages] == ["m2", "m1"]

    def test_duplicate_ids_kept_once_in_first_arrival_order(self):
        pipeline = IngestionPipeline("room-1")
        for message_id in ["a", "b", "a", "c", "b", "a"]:
            pipeline.ingest(_event(message_id))
        assert [m.message_id for m in pipeline.messages] == ["a", "b", "c"]
        assert pipeline.duplicates_dropped == 3

    def test_duplicate_keeps_first_body(self):
        pipeline = IngestionPipeline("room-1")
        pipeline.ingest(_event("a", body="first"))
        assert pipeline.ingest(_event("a", body="second")) is None
        assert pipeline.messages[0].body == "first"

    def test_same_frame_twice_grows_history_by_one(self):
        pipeline = IngestionPipeline("room-1")
        frame = chat_frame("m1")
        pipeline.ingest(classify_frame(frame))
        pipeline.ingest(classify_frame(frame))
        assert len(pipeline) == 1

    def test_participant_count_from_latest_event(self):
        """Even a duplicate delivery updates the participant count."""
        pipeline = IngestionPipeline("room-1")
        pipeline.ingest(_event("a", connected_clients=4))
        pipeline.ingest(_event("b", connected_clients=9))
        pipeline.ingest(_event("a", connected_clients=2))
        assert pipeline.participant_count == 2
        assert len(pipeline) == 2

    def test_liveness_changes_nothing(self):
        pipeline = IngestionPipeline("room-1")
        assert pipeline.ingest(LIVENESS) is None
        assert pipeline.messages == ()
        assert pipeline.participant_count == 0

    def test_membership_by_id(self):
        pipeline = IngestionPipeline("room-1")
        pipeline.ingest(_event("a"))
        assert "a" in pipeline
        assert "b" not in pipeline

    def test_messages_view_is_read_only_copy(self):
        pipeline = IngestionPipeline("room-1")
        pipeline.ingest(_event("a"))
        view = pipeline.messages
        pipeline.ingest(_event("b"))
        assert len(view) == 1
        assert isinstance(view, tuple)

    def test_reset_clears_everything(self):
        pipeline = IngestionPipeline("room-1")
        pipeline.ingest(_event("a", connected_clients=5))
        pipeline.reset()
        assert pipeline.messages == ()
        assert pipeline.participant_count == 0
        # ids are forgotten, so a replayed message is accepted again
        assert pipeline.ingest(_event("a")) is not None
