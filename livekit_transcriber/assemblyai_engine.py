"""
AssemblyAI streaming engine (Universal Streaming, v3 API).

The SDK client is thread based: connect/disconnect block, and event handlers
run on the SDK's reader thread. Blocking calls are pushed to a worker thread
with asyncio.to_thread and every event is marshalled back onto the event
loop before it reaches the transcription stream.
"""

import asyncio
import logging
from functools import partial
from typing import Optional, Set

from assemblyai.streaming.v3 import (
    BeginEvent,
    StreamingClient,
    StreamingClientOptions,
    StreamingError,
    StreamingEvents,
    StreamingParameters,
    TerminationEvent,
    TurnEvent,
)

from .exceptions import ConfigurationError
from .transcription_stream import SessionListener

logger = logging.getLogger(__name__)


def turn_confidence(event: TurnEvent) -> Optional[float]:
    """Mean word confidence of a turn, or None when the turn carries no words."""
    words = getattr(event, "words", None) or []
    scores = [w.confidence for w in words if getattr(w, "confidence", None) is not None]
    if not scores:
        return None
    return sum(scores) / len(scores)


class AssemblyAISession:
    """One open StreamingClient bridged to a SessionListener."""

    def __init__(
        self,
        client: StreamingClient,
        listener: SessionListener,
        loop: asyncio.AbstractEventLoop,
        format_turns: bool = True,
    ):
        self.client = client
        self.listener = listener
        self.loop = loop
        self.format_turns = format_turns
        self.session_id: Optional[str] = None
        self._closed = False

        client.on(StreamingEvents.Begin, self._on_begin)
        client.on(StreamingEvents.Turn, self._on_turn)
        client.on(StreamingEvents.Termination, self._on_termination)
        client.on(StreamingEvents.Error, self._on_error)

    def _dispatch(self, callback, *args) -> None:
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(callback, *args)

    # SDK thread handlers: signature is (client, event)

    def _on_begin(self, client: StreamingClient, event: BeginEvent) -> None:
        self.session_id = event.id
        logger.info(f"🎙️ AssemblyAI session started: {event.id}")

    def _on_turn(self, client: StreamingClient, event: TurnEvent) -> None:
        # With formatting on, each turn ends twice: raw first, then formatted.
        final = event.end_of_turn and (event.turn_is_formatted or not self.format_turns)
        self._dispatch(self.listener.on_turn, event.transcript, turn_confidence(event), final)

    def _on_termination(self, client: StreamingClient, event: TerminationEvent) -> None:
        logger.info(
            f"🛑 AssemblyAI session {self.session_id} terminated | "
            f"audio={event.audio_duration_seconds}s session={event.session_duration_seconds}s"
        )
        self._dispatch(self.listener.on_close, 1000, "terminated")

    def _on_error(self, client: StreamingClient, error: StreamingError) -> None:
        code = getattr(error, "code", None)
        logger.error(f"❌ AssemblyAI session {self.session_id} error ({code}): {error}")
        # The SDK stops its reader after any error, so the session is gone.
        self._dispatch(self.listener.on_error, error)
        self._dispatch(self.listener.on_close, code, str(error))

    def send_audio(self, pcm: bytes) -> None:
        if self._closed:
            raise RuntimeError("session is closed")
        self.client.stream(pcm)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(self.client.disconnect, True)


class AssemblyAIEngine:
    """
    Opens AssemblyAI streaming sessions for 16kHz mono PCM.
    """

    def __init__(
        self,
        api_key: str,
        sample_rate: int = 16000,
        api_host: str = "streaming.assemblyai.com",
        format_turns: bool = True,
    ):
        if not api_key:
            raise ConfigurationError("ASSEMBLYAI_API_KEY is not set")
        self.api_key = api_key
        self.sample_rate = sample_rate
        self.api_host = api_host
        self.format_turns = format_turns
        self._abandoned: Set[asyncio.Task] = set()

    def _create_client(self) -> StreamingClient:
        return StreamingClient(
            StreamingClientOptions(api_key=self.api_key, api_host=self.api_host)
        )

    async def open_session(self, listener: SessionListener) -> AssemblyAISession:
        loop = asyncio.get_running_loop()
        client = self._create_client()
        session = AssemblyAISession(client, listener, loop, format_turns=self.format_turns)

        params = StreamingParameters(
            sample_rate=self.sample_rate,
            format_turns=self.format_turns,
        )
        # connect() runs on a worker thread that outlives a cancelled caller
        connecting = asyncio.ensure_future(asyncio.to_thread(client.connect, params))
        try:
            await asyncio.shield(connecting)
        except asyncio.CancelledError:
            logger.info("🔌 AssemblyAI connect cancelled; disconnecting once the handshake returns")
            connecting.add_done_callback(partial(self._hang_up_abandoned, session))
            raise
        return session

    def _hang_up_abandoned(self, session: AssemblyAISession, connecting: asyncio.Future) -> None:
        if connecting.cancelled() or connecting.exception() is not None:
            return
        task = session.loop.create_task(session.close())
        self._abandoned.add(task)
        task.add_done_callback(self._abandoned.discard)

    async def aclose(self) -> None:
        """Wait for abandoned sessions to finish disconnecting."""
        if self._abandoned:
            await asyncio.gather(*self._abandoned, return_exceptions=True)
