"""
Live Transcription Service for LiveKit rooms

Joins video-conferencing rooms as a subscribe-only bot, gates each
participant's audio with an energy-based voice activity detector, streams
speech to AssemblyAI, and publishes finalized transcripts to Redis and
downstream HTTP receivers.

Architecture:
    - FastAPI application with webhook and room-control endpoints
    - RoomSessionRegistry: exactly-once start/stop per room
    - RoomBot: one LiveKit presence per room, retries on join
    - ParticipantHandler: VAD gating and lazy stream reconnects
    - TranscriptionStream: per-participant engine session state machine
    - Redis-backed settings, accounting and transcript streams

Main Entry Point:
    livekit_transcriber.app:app
"""

from .config import TranscriberConfig
from .exceptions import (
    ConfigurationError,
    RoomJoinError,
    SessionStoreError,
    TranscriberError,
    TranscriptionConnectError,
)
from .models import RoomSettings, RoomStats, TranscriptEvent, TranscriptionMode
from .participant_handler import ParticipantHandler
from .room_bot import BotState, RoomBot
from .room_registry import RoomSession, RoomSessionRegistry
from .transcription_stream import ConnectionState, TranscriptionStream
from .vad import AudioChunker

__all__ = [
    "TranscriberConfig",
    "ConfigurationError",
    "RoomJoinError",
    "SessionStoreError",
    "TranscriberError",
    "TranscriptionConnectError",
    "RoomSettings",
    "RoomStats",
    "TranscriptEvent",
    "TranscriptionMode",
    "ParticipantHandler",
    "BotState",
    "RoomBot",
    "RoomSession",
    "RoomSessionRegistry",
    "ConnectionState",
    "TranscriptionStream",
    "AudioChunker",
]
