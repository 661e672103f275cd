"""
Transcription stream adapter.

Wraps one streaming session with a speech-to-text engine for one
participant. Owns the connection state machine, forwards PCM audio while
connected, and surfaces only finalized, non-empty utterances.

The engine itself is pluggable: anything implementing ``TranscriptionEngine``
can back the stream (see assemblyai_engine.AssemblyAIEngine).
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable

from shared.structured_logger import StructuredLogger

from .exceptions import TranscriptionConnectError

logger = logging.getLogger(__name__)
structured = StructuredLogger(logger)

DEFAULT_CONFIDENCE = 0.9


class ConnectionState:
    """Transcription stream connection states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"
    ERRORED = "errored"


@dataclass(frozen=True)
class TranscriptResult:
    text: str
    confidence: float
    is_final: bool = True


class SessionListener(Protocol):
    """Callbacks an engine invokes on the event loop thread."""

    def on_turn(self, text: str, confidence: Optional[float], end_of_turn: bool) -> None: ...

    def on_error(self, error: BaseException) -> None: ...

    def on_close(self, code: Optional[int], reason: str) -> None: ...


@runtime_checkable
class EngineSession(Protocol):
    """An open streaming session with the engine."""

    def send_audio(self, pcm: bytes) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class TranscriptionEngine(Protocol):
    """Factory for streaming sessions (16kHz mono signed 16-bit PCM in)."""

    async def open_session(self, listener: SessionListener) -> EngineSession: ...


class _StreamListener:
    """
    Listener bound to one session generation.

    Late callbacks from a session that has since been replaced are ignored,
    so a stale close can never tear down a fresh reconnect.
    """

    def __init__(self, stream: "TranscriptionStream", generation: int):
        self._stream = stream
        self._generation = generation

    def _current(self) -> bool:
        return self._stream._generation == self._generation

    def on_turn(self, text: str, confidence: Optional[float], end_of_turn: bool) -> None:
        if self._current():
            self._stream._handle_turn(text, confidence, end_of_turn)

    def on_error(self, error: BaseException) -> None:
        if self._current():
            self._stream._handle_error(error)

    def on_close(self, code: Optional[int], reason: str) -> None:
        if self._current():
            self._stream._handle_close(code, reason)


class TranscriptionStream:
    """
    Per-participant streaming transcription session.

    Lifecycle: disconnected -> connecting -> connected -> (closed | errored).
    ``connect()`` may be called again from closed/errored; it does not retry
    internally. ``send_audio()`` never raises.
    """

    def __init__(
        self,
        engine: TranscriptionEngine,
        participant_id: str,
        on_transcript: Callable[[TranscriptResult], None],
        on_error: Optional[Callable[[BaseException], None]] = None,
        on_closed: Optional[Callable[[], None]] = None,
        room_id: Optional[str] = None,
        on_connected: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            engine: Streaming engine sessions are opened against
            participant_id: Participant whose audio this stream carries
            on_transcript: Called with each finalized utterance
            on_error: Called with non-fatal engine errors
            on_closed: Called when the engine ends the session
            room_id: Used for log correlation only
            on_connected: Called each time a session opens
        """
        self.engine = engine
        self.participant_id = participant_id
        self.room_id = room_id
        self._on_transcript = on_transcript
        self._on_error = on_error
        self._on_closed = on_closed
        self._on_connected = on_connected

        self.state = ConnectionState.DISCONNECTED
        self._session: Optional[EngineSession] = None
        self._generation = 0
        self._connect_lock = asyncio.Lock()

        # Statistics
        self.connections = 0
        self.chunks_sent = 0
        self.bytes_sent = 0
        self.transcripts = 0
        self._connected_at: Optional[float] = None

    def _set_state(self, new_state: str, trigger: str) -> None:
        if new_state == self.state:
            return
        old_state, self.state = self.state, new_state
        structured.state_transition(self.room_id, old_state, new_state, trigger, participant_id=self.participant_id)

    def is_active(self) -> bool:
        """True only while a session is open and usable."""
        return self.state == ConnectionState.CONNECTED and self._session is not None

    async def connect(self) -> None:
        """
        Open a session with the engine.

        No-op when already connected.

        Raises:
            TranscriptionConnectError: if the engine cannot open a session
        """
        async with self._connect_lock:
            if self.is_active():
                return

            self._generation += 1
            generation = self._generation
            listener = _StreamListener(self, generation)
            self._set_state(ConnectionState.CONNECTING, "connect")
            start = time.time()

            try:
                session = await self.engine.open_session(listener)
            except asyncio.CancelledError:
                self._generation += 1
                self._set_state(ConnectionState.DISCONNECTED, "connect_cancelled")
                raise
            except Exception as e:
                self._set_state(ConnectionState.ERRORED, "connect_failed")
                logger.error(f"❌ Transcription stream connect failed for {self.participant_id}: {e}")
                raise TranscriptionConnectError(self.participant_id, e) from e

            if generation != self._generation:
                # close() ran while the session was opening
                logger.info(f"🔌 Discarding session opened after close for {self.participant_id}")
                await self._close_session(session)
                return

            self._session = session
            self._connected_at = time.time()
            self.connections += 1
            self._set_state(ConnectionState.CONNECTED, "session_opened")
            logger.info(
                f"✅ Transcription stream connected for {self.participant_id} "
                f"in {time.time() - start:.3f}s (connection #{self.connections})"
            )
            if self._on_connected is not None:
                try:
                    self._on_connected()
                except Exception as e:
                    logger.error(f"❌ Error in connected callback for {self.participant_id}: {e}")

    def send_audio(self, pcm: bytes) -> bool:
        """
        Forward one chunk of 16-bit PCM.

        Returns:
            True if the chunk was handed to the engine; False when not
            connected or the engine rejected it.
        """
        if not self.is_active():
            return False

        try:
            self._session.send_audio(pcm)
        except Exception as e:
            logger.warning(f"⚠️ Dropping audio for {self.participant_id}: {e}")
            return False

        self.chunks_sent += 1
        self.bytes_sent += len(pcm)
        return True

    async def close(self) -> None:
        """
        Terminate the session. Idempotent; engine errors are logged, not raised.
        """
        session, self._session = self._session, None
        # Invalidate the listener so the engine's own close callback is ignored
        self._generation += 1

        if session is not None:
            await self._close_session(session)

        self._set_state(ConnectionState.DISCONNECTED, "close")

        if self._connected_at is not None:
            logger.info(
                f"🔌 Transcription stream closed for {self.participant_id} | "
                f"Session: {time.time() - self._connected_at:.1f}s | "
                f"Chunks: {self.chunks_sent} | Transcripts: {self.transcripts}"
            )
            self._connected_at = None

    async def _close_session(self, session: EngineSession) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.warning(f"⚠️ Error closing transcription stream for {self.participant_id}: {e}")

    # ------------------------------------------------------------------ #
    # Engine callbacks (event loop thread)
    # ------------------------------------------------------------------ #

    def _handle_turn(self, text: str, confidence: Optional[float], end_of_turn: bool) -> None:
        if not end_of_turn:
            return
        text = (text or "").strip()
        if not text:
            return

        self.transcripts += 1
        result = TranscriptResult(
            text=text,
            confidence=confidence if confidence is not None else DEFAULT_CONFIDENCE,
            is_final=True,
        )
        try:
            self._on_transcript(result)
        except Exception as e:
            logger.error(f"❌ Error in transcript callback for {self.participant_id}: {e}", exc_info=True)

    def _handle_error(self, error: BaseException) -> None:
        logger.warning(f"⚠️ Transcription engine error for {self.participant_id}: {error}")
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception as e:
                logger.error(f"❌ Error in error callback for {self.participant_id}: {e}")

    def _handle_close(self, code: Optional[int], reason: str) -> None:
        self._session = None
        self._generation += 1
        self._set_state(ConnectionState.CLOSED, f"engine_closed:{code}")
        logger.info(f"🔌 Transcription session ended by engine for {self.participant_id} ({code} {reason})")
        if self._on_closed is not None:
            try:
                self._on_closed()
            except Exception as e:
                logger.error(f"❌ Error in close callback for {self.participant_id}: {e}")

    def get_stats(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "state": self.state,
            "connections": self.connections,
            "chunks_sent": self.chunks_sent,
            "bytes_sent": self.bytes_sent,
            "transcripts": self.transcripts,
        }
