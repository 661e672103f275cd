"""
Per-participant audio handler.

Converts incoming PCM frames to float, gates them through the voice activity
detector, and forwards speech chunks to the participant's transcription
stream, reconnecting the stream lazily when speech arrives after it closed.
"""

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Optional

import numpy as np

from shared import observability

from .transcription_stream import TranscriptionStream
from .vad import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_SPEECH_THRESHOLD,
    AudioChunker,
    detect_voice_activity,
    float_to_int16,
    int16_to_float,
)

logger = logging.getLogger(__name__)


class ParticipantHandler:
    """
    Owns one participant's gate, stream and speech accounting.

    ``speech_duration_ms`` grows only by the duration of chunks actually
    handed to the engine.
    """

    def __init__(
        self,
        participant_id: str,
        participant_name: str,
        stream: TranscriptionStream,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        speech_threshold: float = DEFAULT_SPEECH_THRESHOLD,
        room_id: Optional[str] = None,
    ):
        self.participant_id = participant_id
        self.participant_name = participant_name
        self.stream = stream
        self.sample_rate = sample_rate
        self.speech_threshold = speech_threshold
        self.room_id = room_id

        self.chunker = AudioChunker(chunk_size)
        self.cancel_event = asyncio.Event()

        self.speech_duration_ms = 0.0
        self.last_speech_at: Optional[float] = None

        # Statistics
        self.frames_received = 0
        self.speech_chunks = 0
        self.silence_chunks = 0
        self.dropped_chunks = 0
        self.reconnects = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        """Stop audio consumption; frames arriving afterwards are ignored."""
        self.cancel_event.set()

    async def process_frame(self, pcm: np.ndarray, sample_rate: Optional[int] = None) -> int:
        """
        Gate one frame of int16 PCM and forward any speech chunks.

        Returns:
            Number of chunks forwarded to the engine.
        """
        if self.cancelled:
            return 0

        rate = sample_rate or self.sample_rate
        self.frames_received += 1
        if self.frames_received == 1 or self.frames_received % 100 == 0:
            logger.debug(
                f"🎧 {self.participant_id}: frame #{self.frames_received} "
                f"({len(pcm)} samples @ {rate}Hz)"
            )

        forwarded = 0
        for chunk in self.chunker.add_samples(int16_to_float(pcm)):
            if self.cancelled:
                break

            if not detect_voice_activity(chunk, self.speech_threshold):
                self.silence_chunks += 1
                observability.record_audio_chunk("silence")
                continue

            if not self.stream.is_active():
                if not await self._reconnect():
                    # Only this chunk is lost; the next speech chunk retries.
                    self.dropped_chunks += 1
                    observability.record_audio_chunk("dropped")
                    continue

            if not self.stream.send_audio(float_to_int16(chunk).tobytes()):
                self.dropped_chunks += 1
                observability.record_audio_chunk("dropped")
                continue

            chunk_ms = len(chunk) / rate * 1000
            self.speech_duration_ms += chunk_ms
            self.last_speech_at = time.time()
            self.speech_chunks += 1
            forwarded += 1
            observability.record_audio_chunk("speech", chunk_ms / 1000)

        return forwarded

    async def _reconnect(self) -> bool:
        logger.info(f"🔄 Reconnecting transcription stream for {self.participant_id} (speech after close)")
        try:
            await self.stream.connect()
        except Exception as e:
            logger.warning(f"⚠️ Reconnect failed for {self.participant_id}, dropping chunk: {e}")
            observability.record_stream_reconnect(False)
            return False
        self.reconnects += 1
        observability.record_stream_reconnect(True)
        return True

    async def consume(self, frames: AsyncIterator[Any]) -> None:
        """
        Feed frames from a subscribed track until it ends or the handler is cancelled.

        Frames expose ``data`` (int16 PCM buffer) and ``sample_rate``.
        """
        try:
            async for frame in frames:
                if self.cancelled:
                    break
                pcm = np.frombuffer(frame.data, dtype=np.int16)
                await self.process_frame(pcm, frame.sample_rate)
        finally:
            aclose = getattr(frames, "aclose", None)
            if aclose is not None:
                await aclose()
            logger.info(
                f"🛑 Audio consumption ended for {self.participant_id} | "
                f"frames={self.frames_received} speech={self.speech_chunks} "
                f"silence={self.silence_chunks} dropped={self.dropped_chunks}"
            )

    async def close(self) -> float:
        """
        Cancel consumption, then close the stream.

        Returns:
            Total speech milliseconds forwarded for this participant.
        """
        self.cancel()
        self.chunker.reset()
        await self.stream.close()
        return self.speech_duration_ms

    def get_stats(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "participant_name": self.participant_name,
            "speech_duration_ms": self.speech_duration_ms,
            "last_speech_at": self.last_speech_at,
            "speech_chunks": self.speech_chunks,
            "silence_chunks": self.silence_chunks,
            "dropped_chunks": self.dropped_chunks,
            "reconnects": self.reconnects,
            "stream": self.stream.get_stats(),
        }
