"""
Data models for the live transcription service.

Domain records are dataclasses; HTTP request bodies are pydantic models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TranscriptionMode(str, Enum):
    """Per-room transcription setting."""
    OFF = "off"
    POST_CALL = "post-call"
    LIVE = "live"

    @classmethod
    def parse(cls, value: Optional[str]) -> "TranscriptionMode":
        """Unknown or missing values mean transcription is disabled."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.OFF


@dataclass(frozen=True)
class RoomSettings:
    room_id: str
    mode: TranscriptionMode = TranscriptionMode.OFF
    host_id: Optional[str] = None
    correlation_id: Optional[str] = None


@dataclass(frozen=True)
class TranscriptEvent:
    """A finalized utterance attributed to one participant of one room."""
    room_id: str
    participant_id: str
    participant_name: str
    text: str
    is_final: bool = True
    confidence: float = 0.9
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "room_id": self.room_id,
            "participant_id": self.participant_id,
            "participant_name": self.participant_name,
            "text": self.text,
            "is_final": self.is_final,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class RoomStats:
    """Totals returned by a bot when it leaves a room."""
    duration_ms: float
    speech_duration_ms: float

    @property
    def silence_saved_percent(self) -> float:
        if self.duration_ms <= 0:
            return 0.0
        return max(0.0, (1 - self.speech_duration_ms / self.duration_ms) * 100)


# ============================================================================
# Webhook payloads
# ============================================================================

class WebhookRoom(BaseModel):
    name: str
    sid: Optional[str] = None


class WebhookParticipant(BaseModel):
    identity: str
    name: Optional[str] = None
    sid: Optional[str] = None


class LiveKitWebhook(BaseModel):
    """Subset of the LiveKit webhook body the service reacts to."""
    event: str
    room: Optional[WebhookRoom] = None
    participant: Optional[WebhookParticipant] = None


class PlatformWebhook(BaseModel):
    """Room lifecycle notification from the meeting platform."""
    event: str
    room_id: str = Field(alias="roomId")
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}
