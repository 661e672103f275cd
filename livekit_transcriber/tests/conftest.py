"""
Pytest fixtures and in-memory fakes for the transcription service tests.

The fakes stand in for the external collaborators (streaming engine, media
transport, settings store) so the room lifecycle can be driven
deterministically on one event loop.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import numpy as np
import pytest

from livekit_transcriber.config import TranscriberConfig
from livekit_transcriber.models import RoomSettings, RoomStats, TranscriptionMode

SAMPLE_RATE = 16000
CHUNK_SIZE = 4800


def speech_samples(n: int = CHUNK_SIZE, amplitude: int = 3000) -> np.ndarray:
    return np.full(n, amplitude, dtype=np.int16)


def silence_samples(n: int = CHUNK_SIZE) -> np.ndarray:
    return np.zeros(n, dtype=np.int16)


# ============================================================================
# Transcription engine
# ============================================================================

class FakeSession:
    def __init__(self, listener):
        self.listener = listener
        self.sent: List[bytes] = []
        self.closed = False
        self.close_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.on_close_hook = None

    def send_audio(self, pcm: bytes) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(pcm)

    async def close(self) -> None:
        if self.on_close_hook is not None:
            self.on_close_hook()
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeEngine:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.open_calls = 0
        self.sessions: List[FakeSession] = []
        self.open_gate: Optional[asyncio.Event] = None

    async def open_session(self, listener) -> FakeSession:
        self.open_calls += 1
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("engine unavailable")
        session = FakeSession(listener)
        self.sessions.append(session)
        return session

    @property
    def last_session(self) -> FakeSession:
        return self.sessions[-1]


# ============================================================================
# Room transport
# ============================================================================

@dataclass
class FakeFrame:
    data: np.ndarray
    sample_rate: int = SAMPLE_RATE


@dataclass
class FakeTrack:
    sid: str
    kind: str = "audio"
    frames: List[FakeFrame] = field(default_factory=list)
    hold_open: bool = False


@dataclass
class FakePublication:
    track: Optional[FakeTrack]


@dataclass
class FakeParticipant:
    identity: str
    name: str = ""
    track_publications: Dict[str, FakePublication] = field(default_factory=dict)

    def add_track(self, track: FakeTrack) -> FakeTrack:
        self.track_publications[track.sid] = FakePublication(track)
        return track


class FakeRoom:
    def __init__(self):
        self.handlers: Dict[str, list] = {}
        self.remote_participants: Dict[str, FakeParticipant] = {}
        self.connected = False
        self.disconnect_calls = 0

    def on(self, event, callback):
        self.handlers.setdefault(event, []).append(callback)
        return callback

    def emit(self, event, *args):
        for callback in self.handlers.get(event, []):
            callback(*args)

    async def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False


class FakeTransport:
    def __init__(self, participants: Optional[List[FakeParticipant]] = None, fail_times: int = 0):
        self.participants = participants or []
        self.fail_times = fail_times
        self.connect_calls = 0
        self.rooms: List[FakeRoom] = []
        self.tokens: List[tuple] = []
        self.on_connect = None

    def create_token(self, room_id, identity, name):
        self.tokens.append((room_id, identity, name))
        return "token"

    def create_room(self) -> FakeRoom:
        room = FakeRoom()
        self.rooms.append(room)
        return room

    async def connect(self, room: FakeRoom, token: str) -> None:
        self.connect_calls += 1
        if self.on_connect is not None:
            self.on_connect(room)
        if self.connect_calls <= self.fail_times:
            raise ConnectionError("transport unavailable")
        for participant in self.participants:
            room.remote_participants[participant.identity] = participant
        room.connected = True

    def is_audio_track(self, track) -> bool:
        return track.kind == "audio"

    async def audio_frames(self, track: FakeTrack):
        for frame in track.frames:
            yield frame
        if track.hold_open:
            await asyncio.Event().wait()

    @property
    def last_room(self) -> FakeRoom:
        return self.rooms[-1]


# ============================================================================
# Registry collaborators
# ============================================================================

class FakeBot:
    """RoomBot stand-in with gates to hold join/leave open."""

    def __init__(self, room_id, on_transcript, on_disconnected, log: list, join_error=None):
        self.room_id = room_id
        self.on_transcript = on_transcript
        self.on_disconnected = on_disconnected
        self.log = log
        self.join_error = join_error
        self.join_gate: Optional[asyncio.Event] = None
        self.leave_gate: Optional[asyncio.Event] = None
        self.leave_error: Optional[Exception] = None
        self.join_calls = 0
        self.leave_calls = 0

    async def join(self):
        self.join_calls += 1
        self.log.append(("join", self.room_id))
        await asyncio.sleep(0)
        if self.join_gate is not None:
            await self.join_gate.wait()
        if self.join_error is not None:
            raise self.join_error

    async def leave(self) -> RoomStats:
        self.leave_calls += 1
        self.log.append(("leave_start", self.room_id))
        await asyncio.sleep(0)
        if self.leave_error is not None:
            raise self.leave_error
        if self.leave_gate is not None:
            await self.leave_gate.wait()
        self.log.append(("leave_done", self.room_id))
        return RoomStats(duration_ms=60000, speech_duration_ms=15000)

    def get_stats(self) -> dict:
        return {"participants": 2, "speech_duration_ms": 1500.0}


class BotFactory:
    def __init__(self):
        self.bots: List[FakeBot] = []
        self.log: list = []
        self.join_error = None
        self.join_gate: Optional[asyncio.Event] = None

    def __call__(self, room_id, on_transcript, on_disconnected) -> FakeBot:
        bot = FakeBot(room_id, on_transcript, on_disconnected, self.log, self.join_error)
        bot.join_gate = self.join_gate
        self.bots.append(bot)
        return bot


@pytest.fixture
def config():
    return TranscriberConfig(
        livekit_url="wss://livekit.example.com",
        livekit_api_key="key",
        livekit_api_secret="secret",
        assemblyai_api_key="aai-key",
    )


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def store():
    store = AsyncMock()
    store.get_room_settings = AsyncMock(
        return_value=RoomSettings(room_id="standup", mode=TranscriptionMode.LIVE, correlation_id="corr-1")
    )
    store.create_session = AsyncMock(return_value="session-1")
    store.complete_session = AsyncMock()
    store.abandon_session = AsyncMock()
    store.publish_transcript = AsyncMock()
    store.release_room = AsyncMock()
    return store


@pytest.fixture
def bot_factory():
    return BotFactory()


@pytest.fixture
def mock_redis_client():
    client = AsyncMock()
    client.hgetall = AsyncMock(return_value={})
    client.hget = AsyncMock(return_value="standup")
    client.hset = AsyncMock(return_value=1)
    client.xadd = AsyncMock(return_value="1234567890-0")
    client.publish = AsyncMock(return_value=1)
    client.expire = AsyncMock(return_value=True)
    client.ping = AsyncMock(return_value=True)
    return client
