"""
Room settings and session accounting on Redis.

Key layout:
    transcriber:room:{room_id}                 hash  transcription_mode, host_id, correlation_id
    transcriber:session:{session_id}           hash  accounting record
    transcriber:room:{room_id}:transcripts     stream of transcript events
    transcriber:sessions                       stream of session lifecycle events
    room:{room_id}:transcript                  pub/sub channel for live subscribers

Billing is on speech time only: silence gated out by the VAD is free.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol

import redis.asyncio as redis

from shared.event_broker import EventBroker
from shared.events import EventTypes, ServiceEvent

from .exceptions import SessionStoreError
from .models import RoomSettings, TranscriptEvent, TranscriptionMode

logger = logging.getLogger(__name__)

SOURCE = "livekit_transcriber"
SESSIONS_STREAM = "transcriber:sessions"


def room_key(room_id: str) -> str:
    return f"transcriber:room:{room_id}"


def session_key(session_id: str) -> str:
    return f"transcriber:session:{session_id}"


def transcript_stream_key(room_id: str) -> str:
    return f"transcriber:room:{room_id}:transcripts"


def transcript_channel(room_id: str) -> str:
    return f"room:{room_id}:transcript"


def compute_token_cost(speech_duration_ms: float, tokens_per_hour: int = 8) -> int:
    """Tokens billed for a session: whole speech seconds, pro-rated per hour, rounded up."""
    speech_seconds = math.ceil(speech_duration_ms / 1000)
    return math.ceil(speech_seconds / 3600 * tokens_per_hour)


class SessionStore(Protocol):
    """Settings lookup, accounting records and transcript publishing."""

    async def get_room_settings(self, room_id: str) -> Optional[RoomSettings]: ...

    async def create_session(self, room_id: str, mode: TranscriptionMode) -> str: ...

    async def complete_session(self, session_id: str, duration_ms: float, speech_duration_ms: float) -> None: ...

    async def abandon_session(self, session_id: str) -> None: ...

    async def publish_transcript(self, event: TranscriptEvent) -> None: ...

    async def release_room(self, room_id: str) -> None: ...


class RedisSessionStore:
    """SessionStore backed by Redis hashes, streams and pub/sub."""

    def __init__(
        self,
        redis_client: redis.Redis,
        tokens_per_hour: int = 8,
        transcript_retention_s: int = 86400,
        max_stream_len: int = 10000,
    ):
        self.redis = redis_client
        self.broker = EventBroker(redis_client)
        self.tokens_per_hour = tokens_per_hour
        self.transcript_retention_s = transcript_retention_s
        self.max_stream_len = max_stream_len

    async def get_room_settings(self, room_id: str) -> Optional[RoomSettings]:
        """
        Returns:
            RoomSettings, or None when the room is unknown

        Raises:
            SessionStoreError: on Redis failure
        """
        try:
            data = await self.redis.hgetall(room_key(room_id))
        except Exception as e:
            raise SessionStoreError("get_room_settings", e) from e

        if not data:
            return None

        return RoomSettings(
            room_id=room_id,
            mode=TranscriptionMode.parse(data.get("transcription_mode")),
            host_id=data.get("host_id") or None,
            correlation_id=data.get("correlation_id") or None,
        )

    async def create_session(self, room_id: str, mode: TranscriptionMode) -> str:
        """
        Open an accounting record.

        Raises:
            SessionStoreError: if the record could not be written
        """
        session_id = uuid.uuid4().hex
        record = {
            "room_id": room_id,
            "mode": TranscriptionMode(mode).value,
            "status": "active",
            "started_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self.redis.hset(session_key(session_id), mapping=record)
        except Exception as e:
            raise SessionStoreError("create_session", e) from e

        await self._publish_lifecycle(
            EventTypes.SESSION_STARTED,
            room_id,
            {"session_id": session_id, "mode": record["mode"]},
        )
        logger.info(f"📒 Session {session_id} opened for room {room_id} ({record['mode']})")
        return session_id

    async def complete_session(self, session_id: str, duration_ms: float, speech_duration_ms: float) -> None:
        """Close an accounting record with billed durations. Failures are logged."""
        duration_s = math.ceil(duration_ms / 1000)
        speech_s = math.ceil(speech_duration_ms / 1000)
        token_cost = compute_token_cost(speech_duration_ms, self.tokens_per_hour)
        savings = (1 - speech_s / duration_s) * 100 if duration_s > 0 else 0.0

        try:
            await self.redis.hset(
                session_key(session_id),
                mapping={
                    "status": "completed",
                    "ended_at": datetime.now(timezone.utc).isoformat(),
                    "duration": duration_s,
                    "speech_duration": speech_s,
                    "token_cost": token_cost,
                },
            )
            room_id = await self.redis.hget(session_key(session_id), "room_id") or ""
        except Exception as e:
            logger.error(f"❌ Failed to complete session {session_id}: {e}")
            return

        await self._publish_lifecycle(
            EventTypes.SESSION_COMPLETED,
            room_id,
            {
                "session_id": session_id,
                "duration": duration_s,
                "speech_duration": speech_s,
                "token_cost": token_cost,
            },
        )
        logger.info(
            f"💰 Session {session_id} completed: {duration_s}s total, {speech_s}s speech, "
            f"{token_cost} tokens ({savings:.1f}% saved by VAD)"
        )

    async def abandon_session(self, session_id: str) -> None:
        """Mark a session whose bot never joined. Failures are logged."""
        try:
            await self.redis.hset(
                session_key(session_id),
                mapping={"status": "failed", "ended_at": datetime.now(timezone.utc).isoformat()},
            )
        except Exception as e:
            logger.error(f"❌ Failed to abandon session {session_id}: {e}")

    async def publish_transcript(self, event: TranscriptEvent) -> None:
        """Persist and broadcast one transcript. Failures are logged."""
        service_event = ServiceEvent(
            event_type=EventTypes.TRANSCRIPT_FINAL,
            room_id=event.room_id,
            payload=event.to_payload(),
            source=SOURCE,
        )
        try:
            await self.broker.publish(transcript_stream_key(event.room_id), service_event, max_len=self.max_stream_len)
            await self.broker.broadcast(transcript_channel(event.room_id), service_event)
        except Exception as e:
            logger.error(f"❌ Failed to publish transcript for {event.room_id}: {e}")

    async def release_room(self, room_id: str) -> None:
        """Start the retention clock on the room's transcript stream."""
        try:
            await self.broker.expire(transcript_stream_key(room_id), self.transcript_retention_s)
        except Exception as e:
            logger.warning(f"⚠️ Failed to set retention on {room_id} transcripts: {e}")

    async def _publish_lifecycle(self, event_type: str, room_id: str, payload: dict) -> None:
        try:
            await self.broker.publish(
                SESSIONS_STREAM,
                ServiceEvent(event_type=event_type, room_id=room_id, payload=payload, source=SOURCE),
                max_len=self.max_stream_len,
            )
        except Exception as e:
            logger.warning(f"⚠️ Failed to publish {event_type}: {e}")
