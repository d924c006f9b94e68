from services.stream.adapter import LatestCallback, MessageStreamAdapter, StreamSnapshot
from services.stream.connection import ConnectionState, StreamConnection
from services.stream.errors import (
    HeartbeatTimeout,
    ReconnectExhausted,
    StreamAlreadyOpen,
    StreamError,
    TransportError,
)
from services.stream.ingest import IngestionPipeline
from services.stream.read_position import ReadPositionTracker, ScrollDecision
from services.stream.sse_channel import PushChannel, SSEChannelFactory, SSEPushChannel

__all__ = [
    "ConnectionState",
    "HeartbeatTimeout",
    "IngestionPipeline",
    "LatestCallback",
    "MessageStreamAdapter",
    "PushChannel",
    "ReadPositionTracker",
    "ReconnectExhausted",
    "SSEChannelFactory",
    "SSEPushChannel",
    "ScrollDecision",
    "StreamAlreadyOpen",
    "StreamConnection",
    "StreamError",
    "StreamSnapshot",
    "TransportError",
]
