"""
Room bot: one subscribe-only presence in one LiveKit room.

Joins with bounded linear-backoff retries, creates a ParticipantHandler per
remote participant, pipes subscribed audio tracks into those handlers, and
on leave() tears everything down and reports the room's wall-clock and
speech durations.

Transport callbacks are synchronous; they only enqueue work. Participant
join/leave/track events are applied by one worker per room, in the order
the transport delivered them, and transcripts are delivered to the owner by
one dispatcher per room in the order they were produced.
"""

import asyncio
import logging
import time
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from shared import observability
from shared.structured_logger import StructuredLogger

from .config import TranscriberConfig
from .exceptions import RoomJoinError
from .livekit_transport import RoomTransport
from .models import RoomStats, TranscriptEvent
from .participant_handler import ParticipantHandler
from .transcription_stream import TranscriptionEngine, TranscriptionStream, TranscriptResult

logger = logging.getLogger(__name__)
structured = StructuredLogger(logger)


class BotState(str, Enum):
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"
    LEFT = "left"


TranscriptCallback = Callable[[TranscriptEvent], Awaitable[None]]
DisconnectCallback = Callable[[str], None]


class RoomBot:
    """
    Transcription presence in a single room.
    """

    def __init__(
        self,
        room_id: str,
        transport: RoomTransport,
        engine: TranscriptionEngine,
        config: TranscriberConfig,
        on_transcript: TranscriptCallback,
        on_disconnected: Optional[DisconnectCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.room_id = room_id
        self.transport = transport
        self.engine = engine
        self.config = config
        self._on_transcript = on_transcript
        self._on_disconnected = on_disconnected
        self._sleep = sleep

        self.state = BotState.JOINING
        self.room: Any = None
        self.participants: Dict[str, ParticipantHandler] = {}
        self.total_speech_ms = 0.0
        self._started = time.monotonic()
        self._stats: Optional[RoomStats] = None

        # track sid -> (participant identity, consumer task)
        self._audio_tasks: Dict[str, Tuple[str, asyncio.Task]] = {}
        self._room_events: "asyncio.Queue[Tuple[str, tuple]]" = asyncio.Queue()
        self._transcripts: "asyncio.Queue[Optional[TranscriptEvent]]" = asyncio.Queue()
        self._room_worker: Optional[asyncio.Task] = None
        self._dispatcher: Optional[asyncio.Task] = None

    def _set_state(self, new_state: BotState, trigger: str) -> None:
        old_state, self.state = self.state, new_state
        structured.state_transition(self.room_id, old_state.value, new_state.value, trigger)

    # ------------------------------------------------------------------ #
    # Join
    # ------------------------------------------------------------------ #

    async def join(self) -> None:
        """
        Connect to the room and start transcribing everyone already in it.

        Raises:
            RoomJoinError: if every connect attempt failed
        """
        join_started = time.monotonic()
        token = self.transport.create_token(self.room_id, self.config.bot_identity, self.config.bot_name)
        self._dispatcher = asyncio.create_task(self._dispatch_transcripts())

        max_attempts = self.config.join_max_attempts
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            room = self.transport.create_room()
            self._register_room_events(room)
            try:
                logger.info(f"🔌 Connecting to room {self.room_id} (attempt {attempt}/{max_attempts})")
                await self.transport.connect(room, token)
                self.room = room
                break
            except Exception as e:
                last_error = e
                logger.warning(f"⚠️ Connect attempt {attempt}/{max_attempts} to {self.room_id} failed: {e}")
                await self._disconnect_room(room)
                if attempt < max_attempts:
                    delay = attempt * self.config.join_retry_delay_s
                    logger.info(f"⏳ Retrying {self.room_id} in {delay:.1f}s...")
                    await self._sleep(delay)
        else:
            raise RoomJoinError(self.room_id, max_attempts, last_error) from last_error

        for participant in list(self.room.remote_participants.values()):
            await self._add_participant(participant)

        self._room_worker = asyncio.create_task(self._process_room_events())
        self._set_state(BotState.JOINED, "connected")
        structured.room_joined(
            self.room_id, attempt, (time.monotonic() - join_started) * 1000, len(self.participants)
        )
        logger.info(
            f"✅ Joined room {self.room_id} as {self.config.bot_identity} "
            f"({len(self.participants)} participants)"
        )

    def _register_room_events(self, room: Any) -> None:
        room.on("participant_connected", self._on_participant_connected)
        room.on("participant_disconnected", self._on_participant_disconnected)
        room.on("track_subscribed", self._on_track_subscribed)
        room.on("track_unsubscribed", self._on_track_unsubscribed)
        room.on("disconnected", self._on_room_disconnected)

    # Transport callbacks: enqueue only

    def _on_participant_connected(self, participant: Any) -> None:
        self._room_events.put_nowait(("participant_connected", (participant,)))

    def _on_participant_disconnected(self, participant: Any) -> None:
        self._room_events.put_nowait(("participant_disconnected", (participant,)))

    def _on_track_subscribed(self, track: Any, publication: Any, participant: Any) -> None:
        self._room_events.put_nowait(("track_subscribed", (track, participant)))

    def _on_track_unsubscribed(self, track: Any, publication: Any, participant: Any) -> None:
        self._room_events.put_nowait(("track_unsubscribed", (track, participant)))

    def _on_room_disconnected(self, reason: Any = None) -> None:
        if self.state != BotState.JOINED:
            logger.debug(f"Ignoring disconnect for {self.room_id} while {self.state.value}")
            return
        logger.warning(f"⚠️ Room {self.room_id} disconnected unexpectedly: {reason}")
        if self._on_disconnected is not None:
            self._on_disconnected(self.room_id)

    async def _process_room_events(self) -> None:
        while True:
            kind, args = await self._room_events.get()
            try:
                if kind == "participant_connected":
                    await self._add_participant(*args)
                elif kind == "participant_disconnected":
                    await self._remove_participant(args[0].identity)
                elif kind == "track_subscribed":
                    self._handle_track_subscribed(*args)
                elif kind == "track_unsubscribed":
                    await self._cancel_track(args[0].sid)
            except Exception as e:
                logger.error(f"❌ Error handling {kind} in {self.room_id}: {e}", exc_info=True)
            finally:
                self._room_events.task_done()

    # ------------------------------------------------------------------ #
    # Participants and tracks
    # ------------------------------------------------------------------ #

    async def _add_participant(self, participant: Any) -> None:
        identity = participant.identity
        if identity == self.config.bot_identity or identity in self.participants:
            return

        name = participant.name or identity
        stream = TranscriptionStream(
            self.engine,
            identity,
            on_transcript=partial(self._on_stream_transcript, identity, name),
            room_id=self.room_id,
        )
        try:
            await stream.connect()
        except Exception as e:
            logger.error(f"❌ Could not set up transcription for {identity} in {self.room_id}: {e}")
            return

        handler = ParticipantHandler(
            identity,
            name,
            stream,
            chunk_size=self.config.chunk_size,
            sample_rate=self.config.sample_rate,
            speech_threshold=self.config.speech_threshold,
            room_id=self.room_id,
        )
        self.participants[identity] = handler
        observability.participant_added()
        logger.info(f"👤 Transcribing {name} ({identity}) in {self.room_id}")

        for publication in list(participant.track_publications.values()):
            track = getattr(publication, "track", None)
            if track is not None:
                self._handle_track_subscribed(track, participant)

    def _handle_track_subscribed(self, track: Any, participant: Any) -> None:
        if not self.transport.is_audio_track(track):
            return
        handler = self.participants.get(participant.identity)
        if handler is None or handler.cancelled or track.sid in self._audio_tasks:
            return

        task = asyncio.create_task(handler.consume(self.transport.audio_frames(track)))
        self._audio_tasks[track.sid] = (participant.identity, task)
        task.add_done_callback(partial(self._audio_task_done, track.sid))
        logger.info(f"🎧 Consuming audio track {track.sid} from {participant.identity}")

    def _audio_task_done(self, track_sid: str, task: asyncio.Task) -> None:
        entry = self._audio_tasks.get(track_sid)
        if entry is not None and entry[1] is task:
            del self._audio_tasks[track_sid]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"❌ Audio consumer for track {track_sid} failed: {task.exception()}")

    async def _cancel_track(self, track_sid: str) -> None:
        entry = self._audio_tasks.pop(track_sid, None)
        if entry is None:
            return
        _, task = entry
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _remove_participant(self, identity: str) -> None:
        handler = self.participants.pop(identity, None)
        if handler is None:
            return

        # Cancel before closing so in-flight frames are not forwarded
        handler.cancel()
        for track_sid in [sid for sid, (owner, _) in self._audio_tasks.items() if owner == identity]:
            await self._cancel_track(track_sid)

        speech_ms = await handler.close()
        self.total_speech_ms += speech_ms
        observability.participant_removed()
        logger.info(f"👋 {identity} left {self.room_id} after {speech_ms / 1000:.1f}s of speech")

    # ------------------------------------------------------------------ #
    # Transcripts
    # ------------------------------------------------------------------ #

    def _on_stream_transcript(self, identity: str, name: str, result: TranscriptResult) -> None:
        self._transcripts.put_nowait(
            TranscriptEvent(
                room_id=self.room_id,
                participant_id=identity,
                participant_name=name,
                text=result.text,
                is_final=result.is_final,
                confidence=result.confidence,
            )
        )

    async def _dispatch_transcripts(self) -> None:
        while True:
            event = await self._transcripts.get()
            if event is None:
                return
            try:
                await self._on_transcript(event)
            except Exception as e:
                logger.error(f"❌ Transcript delivery failed for {self.room_id}: {e}", exc_info=True)

    # ------------------------------------------------------------------ #
    # Leave
    # ------------------------------------------------------------------ #

    async def _disconnect_room(self, room: Any) -> None:
        try:
            await room.disconnect()
        except Exception as e:
            logger.warning(f"⚠️ Error disconnecting from {self.room_id}: {e}")

    async def leave(self) -> RoomStats:
        """
        Stop every participant pipeline, disconnect, and report durations.

        Safe to call after a failed join; repeated calls return the first result.
        """
        if self.state in (BotState.LEAVING, BotState.LEFT):
            return self._stats or RoomStats(self._elapsed_ms(), self.total_speech_ms)

        self._set_state(BotState.LEAVING, "leave")

        if self._room_worker is not None:
            self._room_worker.cancel()
            await asyncio.gather(self._room_worker, return_exceptions=True)
            self._room_worker = None

        for identity in list(self.participants):
            await self._remove_participant(identity)

        for track_sid in list(self._audio_tasks):
            await self._cancel_track(track_sid)

        if self.room is not None:
            await self._disconnect_room(self.room)
            self.room = None

        if self._dispatcher is not None:
            self._transcripts.put_nowait(None)
            await self._dispatcher
            self._dispatcher = None

        self._stats = RoomStats(self._elapsed_ms(), self.total_speech_ms)
        self._set_state(BotState.LEFT, "left")

        logger.info("=" * 70)
        logger.info(f"🏁 Left room {self.room_id}")
        logger.info(f"   Duration: {self._stats.duration_ms / 1000:.1f}s")
        logger.info(f"   Speech: {self._stats.speech_duration_ms / 1000:.1f}s")
        logger.info(f"   Silence skipped by VAD: {self._stats.silence_saved_percent:.1f}%")
        logger.info("=" * 70)
        return self._stats

    def _elapsed_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000

    def get_stats(self) -> dict:
        live_speech_ms = sum(h.speech_duration_ms for h in self.participants.values())
        return {
            "room_id": self.room_id,
            "state": self.state.value,
            "participants": len(self.participants),
            "duration_ms": self._elapsed_ms(),
            "speech_duration_ms": self.total_speech_ms + live_speech_ms,
        }
