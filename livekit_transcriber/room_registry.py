"""
Room session registry.

Decides which rooms get a transcription bot and guarantees at most one live
session per room under concurrent start/stop triggers (webhooks, manual API
calls, transport disconnects).

Concurrency model: every mutation of the active/joining/stopping sets happens
synchronously between awaits on the single event loop, so a membership test
and the insertion that follows it cannot interleave with another trigger.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from shared import observability

from .forwarding import TranscriptForwarder
from .models import RoomStats, TranscriptEvent, TranscriptionMode
from .room_bot import DisconnectCallback, RoomBot, TranscriptCallback
from .session_store import SessionStore

logger = logging.getLogger(__name__)

BotFactory = Callable[[str, TranscriptCallback, DisconnectCallback], RoomBot]


@dataclass
class RoomSession:
    room_id: str
    mode: TranscriptionMode
    session_id: str
    bot: RoomBot
    correlation_id: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RoomSessionRegistry:
    """
    Owns every RoomSession and the bots inside them.

    Args:
        store: room settings, accounting records and transcript publishing
        bot_factory: builds a RoomBot for (room_id, on_transcript, on_disconnected)
        forwarder: optional downstream HTTP delivery for final transcripts
    """

    def __init__(
        self,
        store: SessionStore,
        bot_factory: BotFactory,
        forwarder: Optional[TranscriptForwarder] = None,
    ):
        self.store = store
        self.bot_factory = bot_factory
        self.forwarder = forwarder

        self._active: Dict[str, RoomSession] = {}
        self._joining: Set[str] = set()
        self._stopping: Dict[str, asyncio.Event] = {}
        self._background: Set[asyncio.Task] = set()
        self._closing = False

    # ------------------------------------------------------------------ #
    # Start
    # ------------------------------------------------------------------ #

    async def start_room(self, room_id: str) -> bool:
        """
        Start transcribing a room if its settings allow it.

        Returns:
            True if the room is (or is becoming) transcribed; False when
            transcription is disabled, setup failed or the registry is
            shutting down. Never raises.
        """
        if self._closing:
            logger.warning(f"⚠️ Ignoring start for {room_id}: shutting down")
            return False
        if room_id in self._active or room_id in self._joining:
            logger.info(f"ℹ️ Room {room_id} already active or joining")
            return True

        self._joining.add(room_id)
        try:
            return await self._start(room_id)
        except Exception as e:
            logger.error(f"❌ Failed to start room {room_id}: {e}", exc_info=True)
            observability.record_room_join(False)
            return False
        finally:
            self._joining.discard(room_id)

    async def _start(self, room_id: str) -> bool:
        stopping = self._stopping.get(room_id)
        if stopping is not None:
            logger.info(f"⏳ Waiting for previous session of {room_id} to finish leaving")
            await stopping.wait()

        settings = await self.store.get_room_settings(room_id)
        if settings is None:
            logger.warning(f"⚠️ No settings found for room {room_id}")
            return False
        if settings.mode == TranscriptionMode.OFF:
            logger.info(f"🔇 Transcription disabled for room {room_id}")
            return False

        session_id = await self.store.create_session(room_id, settings.mode)
        correlation_id = settings.correlation_id

        async def on_transcript(event: TranscriptEvent) -> None:
            await self._handle_transcript(event, correlation_id)

        bot = self.bot_factory(room_id, on_transcript, self._handle_disconnected)

        try:
            async with observability.time_room_join():
                await bot.join()
        except Exception as e:
            logger.error(f"❌ Bot failed to join {room_id}: {e}")
            observability.record_room_join(False)
            try:
                await bot.leave()
            except Exception as leave_error:
                logger.warning(f"⚠️ Cleanup after failed join of {room_id} failed: {leave_error}")
            await self.store.abandon_session(session_id)
            return False

        self._active[room_id] = RoomSession(
            room_id=room_id,
            mode=settings.mode,
            session_id=session_id,
            bot=bot,
            correlation_id=correlation_id,
        )
        observability.record_room_join(True)
        observability.set_active_rooms(len(self._active))
        logger.info(f"✅ Transcription started for room {room_id} (session {session_id}, {settings.mode.value})")
        return True

    # ------------------------------------------------------------------ #
    # Stop
    # ------------------------------------------------------------------ #

    async def stop_room(self, room_id: str) -> bool:
        """
        Tear down a room's session and complete its accounting record.

        Returns:
            True if this call performed the teardown; False when there was
            nothing to stop or another stop for the same room is in flight.
        """
        session = self._active.get(room_id)
        if session is None:
            logger.info(f"ℹ️ Room {room_id} is not active")
            return False
        if room_id in self._stopping:
            logger.info(f"ℹ️ Stop already in progress for {room_id}")
            return False

        done = asyncio.Event()
        self._stopping[room_id] = done
        # Removed before teardown; a concurrent start waits on `done`.
        del self._active[room_id]
        observability.set_active_rooms(len(self._active))

        try:
            try:
                stats = await session.bot.leave()
            except Exception as e:
                logger.error(f"❌ Bot for {room_id} failed to leave cleanly: {e}", exc_info=True)
                stats = self._fallback_stats(session)
            await self.store.complete_session(session.session_id, stats.duration_ms, stats.speech_duration_ms)
            await self.store.release_room(room_id)
            logger.info(f"🛑 Transcription stopped for room {room_id}")
        finally:
            del self._stopping[room_id]
            done.set()
        return True

    async def stop_all(self) -> None:
        """
        Stop every active room, one at a time.

        New starts are refused from here on; starts already joining are
        awaited so their rooms are stopped too.
        """
        self._closing = True
        if self._background:
            logger.info(f"⏳ Waiting for {len(self._background)} pending room operations...")
            await asyncio.gather(*list(self._background), return_exceptions=True)

        room_ids = list(self._active)
        if room_ids:
            logger.info(f"🛑 Stopping {len(room_ids)} active rooms...")
        for room_id in room_ids:
            try:
                await self.stop_room(room_id)
            except Exception as e:
                logger.error(f"❌ Error stopping room {room_id}: {e}", exc_info=True)

        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Bot callbacks
    # ------------------------------------------------------------------ #

    def _fallback_stats(self, session: RoomSession) -> RoomStats:
        """Durations for a session whose bot could not report its own."""
        elapsed_ms = (datetime.now(timezone.utc) - session.started_at).total_seconds() * 1000
        speech_ms = session.bot.get_stats().get("speech_duration_ms", 0.0)
        return RoomStats(elapsed_ms, speech_ms)

    def _handle_disconnected(self, room_id: str) -> None:
        logger.warning(f"⚠️ Bot for {room_id} lost its connection; stopping session")
        self.spawn(self.stop_room(room_id))

    async def _handle_transcript(self, event: TranscriptEvent, correlation_id: Optional[str]) -> None:
        observability.record_transcript()
        logger.info(f"📝 [{event.room_id}] {event.participant_name}: {event.text}")
        await self.store.publish_transcript(event)
        if self.forwarder is not None and event.is_final:
            await self.forwarder.forward(event, correlation_id)

    def spawn(self, coro) -> asyncio.Task:
        """Run a registry operation in the background, keeping a reference until done."""
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"❌ Background room operation failed: {task.exception()}")

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def is_room_active(self, room_id: str) -> bool:
        return room_id in self._active

    def active_rooms(self) -> List[str]:
        return list(self._active)

    def room_stats(self, room_id: str) -> Optional[dict]:
        session = self._active.get(room_id)
        if session is None:
            return None
        bot_stats = session.bot.get_stats()
        return {
            "room_id": room_id,
            "mode": session.mode.value,
            "session_id": session.session_id,
            "started_at": session.started_at.isoformat(),
            "participants": bot_stats["participants"],
            "speech_duration_ms": bot_stats["speech_duration_ms"],
        }
