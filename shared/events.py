"""
Unified Event Schema for the transcription services.

Defines the standard event structure written to Redis Streams and broadcast
over Redis pub/sub.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any
import time
import json
import uuid


@dataclass
class ServiceEvent:
    """
    Standard event model for room and transcription events.

    ``room_id`` is the key events are partitioned by; stream keys and
    broadcast channels are derived from it.
    """
    event_type: str
    room_id: str
    payload: Dict[str, Any]
    source: str
    timestamp: float = field(default_factory=time.time)
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    def to_json(self) -> str:
        """Serialize for pub/sub broadcast."""
        return json.dumps(self.to_dict())

    def to_redis_dict(self) -> Dict[str, str]:
        """
        Convert to Redis-compatible dictionary (all values must be strings/bytes).
        The payload and metadata are JSON serialized.
        """
        return {
            "event_type": self.event_type,
            "room_id": self.room_id,
            "source": self.source,
            "timestamp": str(self.timestamp),
            "correlation_id": self.correlation_id,
            "payload": json.dumps(self.payload),
            "metadata": json.dumps(self.metadata)
        }

    @classmethod
    def from_redis_dict(cls, data: Dict[Any, Any]) -> 'ServiceEvent':
        """Create ServiceEvent from Redis stream data."""
        def decode(val):
            return val.decode('utf-8') if isinstance(val, bytes) else val

        def get(key: str):
            return data.get(key) or data.get(key.encode())

        return cls(
            event_type=decode(get("event_type")),
            room_id=decode(get("room_id")),
            source=decode(get("source")),
            timestamp=float(decode(get("timestamp") or 0.0)),
            correlation_id=decode(get("correlation_id")),
            payload=json.loads(decode(get("payload") or "{}")),
            metadata=json.loads(decode(get("metadata") or "{}"))
        )

    def validate_payload(self) -> None:
        """Validate payload schema for critical event types."""
        required = {
            EventTypes.TRANSCRIPT_FINAL: ["participant_id", "text", "is_final", "confidence"],
            EventTypes.SESSION_STARTED: ["session_id", "mode"],
            EventTypes.SESSION_COMPLETED: ["session_id", "duration", "speech_duration", "token_cost"],
        }

        fields = required.get(self.event_type)
        if fields:
            missing = [f for f in fields if f not in self.payload]
            if missing:
                raise ValueError(
                    f"Event {self.event_type} payload missing required fields: {missing}. "
                    f"Payload: {self.payload}"
                )


# Event Type Constants
class EventTypes:
    # Transcription Events
    TRANSCRIPT_FINAL = "transcriber.transcript.final"

    # Session accounting Events
    SESSION_STARTED = "transcriber.session.started"
    SESSION_COMPLETED = "transcriber.session.completed"
