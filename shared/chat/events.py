"""Room chat event schema and frame classifier."""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from shared.logging.logger import get_logger

log = get_logger("chat.events")

PING_TYPE = "ping"

CHAT_FIELDS = (
    "id",
    "user_id",
    "user_name",
    "message",
    "timestamp",
    "room_id",
    "connected_clients",
)


class MalformedFrame(ValueError):
    """Raised when a stream frame cannot be decoded into a known event."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(raw: Union[str, int, float, None]) -> Optional[datetime]:
    """
    Server timestamps may be:
      - ISO 8601 string (with or without Z)
      - epoch seconds (int/float)
      - epoch milliseconds (int/float)

    Naive values are treated as UTC. Returns None when unparseable.
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, (int, float)):
        value = float(raw)
        # ms timestamps are typically > 1e12
        if value > 1_000_000_000_000:
            value = value / 1000.0
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(raw, str) and raw.strip():
        try:
            parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    return None


@dataclass(frozen=True)
class ChatMessage:
    message_id: str
    room_id: str
    author_id: str
    author_name: str
    body: str
    sent_at: datetime
    is_system: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["sent_at"] = self.sent_at.isoformat().replace("+00:00", "Z")
        return payload


@dataclass(frozen=True)
class ChatEvent:
    message: ChatMessage
    participant_count: int


@dataclass(frozen=True)
class LivenessSignal:
    type: str = PING_TYPE


LIVENESS = LivenessSignal()

StreamEvent = Union[ChatEvent, LivenessSignal]


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None or isinstance(value, (dict, list, bool)):
        raise MalformedFrame(f"field '{key}' is missing or not a scalar")
    text = str(value)
    if key != "message" and not text.strip():
        raise MalformedFrame(f"field '{key}' is empty")
    return text


def _require_count(payload: Dict[str, Any]) -> int:
    value = payload.get("connected_clients")
    if isinstance(value, bool):
        raise MalformedFrame("field 'connected_clients' must be an integer")
    try:
        count = int(value)
    except (TypeError, ValueError) as e:
        raise MalformedFrame("field 'connected_clients' must be an integer") from e
    if count < 0:
        raise MalformedFrame("field 'connected_clients' must not be negative")
    return count


def decode_event(payload: Any) -> StreamEvent:
    """
    Turn a decoded JSON value into a StreamEvent.

    The discriminant is the "type" field: {"type": "ping"} is a liveness
    signal and carries nothing else. Chat payloads have no "type" field.
    """
    if not isinstance(payload, dict):
        raise MalformedFrame(f"expected a JSON object, got {type(payload).__name__}")

    if payload.get("type") == PING_TYPE:
        return LIVENESS

    missing = [name for name in CHAT_FIELDS if name not in payload]
    if missing:
        raise MalformedFrame(f"chat payload missing fields: {', '.join(missing)}")

    sent_at = parse_timestamp(payload.get("timestamp"))
    if sent_at is None:
        log.debug(f"Unparseable timestamp {payload.get('timestamp')!r}; using receipt time")
        sent_at = _utc_now()

    message = ChatMessage(
        message_id=_require_str(payload, "id"),
        room_id=_require_str(payload, "room_id"),
        author_id=_require_str(payload, "user_id"),
        author_name=_require_str(payload, "user_name"),
        body=_require_str(payload, "message"),
        sent_at=sent_at,
        is_system=bool(payload.get("is_system", False)),
    )
    return ChatEvent(message=message, participant_count=_require_count(payload))


def classify_frame(data: str) -> Optional[StreamEvent]:
    """
    Classify a raw stream frame.

    Malformed frames are logged and dropped (None); they never raise.
    """
    try:
        payload = json.loads(data)
    except (TypeError, ValueError) as e:
        log.warning(f"Dropping non-JSON stream frame ({e}): {str(data)[:200]!r}")
        return None

    try:
        return decode_event(payload)
    except MalformedFrame as e:
        log.warning(f"Dropping malformed stream frame: {e}")
        return None


def is_liveness(event: Optional[StreamEvent]) -> bool:
    return isinstance(event, LivenessSignal)


__all__ = [
    "CHAT_FIELDS",
    "PING_TYPE",
    "LIVENESS",
    "ChatEvent",
    "ChatMessage",
    "LivenessSignal",
    "MalformedFrame",
    "StreamEvent",
    "classify_frame",
    "decode_event",
    "is_liveness",
    "parse_timestamp",
]
