from typing import Iterator, List, Optional, Set, Tuple

from shared.chat.events import ChatEvent, ChatMessage, StreamEvent
from shared.logging.logger import get_logger

log = get_logger("stream.ingest")


class IngestionPipeline:
    """
    Ordered, deduplicated message history for one room session.

    Rules:
    - History is append-only in arrival order; never sorted by sent_at
    - A message id is accepted once; re-deliveries are dropped
    - participant_count is the value carried by the latest chat event
    - Liveness signals never change state
    """

    def __init__(self, room_id: Optional[str] = None):
        self.room_id = room_id
        self._messages: List[ChatMessage] = []
        self._seen_ids: Set[str] = set()
        self._participant_count = 0
        self._duplicates = 0

    # ------------------------------------------------------------------

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def participant_count(self) -> int:
        return self._participant_count

    @property
    def duplicates_dropped(self) -> int:
        return self._duplicates

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self.messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._seen_ids

    # ------------------------------------------------------------------

    def ingest(self, event: StreamEvent) -> Optional[ChatMessage]:
        """
        Apply one classified event.

        Returns the appended message, or None for liveness signals and
        duplicate deliveries.
        """
        if not isinstance(event, ChatEvent):
            return None

        self._participant_count = event.participant_count

        message = event.message
        if message.message_id in self._seen_ids:
            self._duplicates += 1
            log.debug(
                f"[{self.room_id}] Duplicate message dropped (id={message.message_id})"
            )
            return None

        self._seen_ids.add(message.message_id)
        self._messages.append(message)
        return message

    def reset(self) -> None:
        """Forget the session; history is rebuilt from the next stream."""
        log.debug(f"[{self.room_id}] Clearing {len(self._messages)} message(s)")
        self._messages = []
        self._seen_ids = set()
        self._participant_count = 0
        self._duplicates = 0


__all__ = ["IngestionPipeline"]
