"""
Voice activity gate.

Buffers mono float audio into fixed-size chunks and classifies each chunk as
speech or silence by RMS energy, so silent audio never reaches (or is billed
by) the transcription engine. Also provides the PCM conversions used at the
transport and engine boundaries.
"""

from typing import List, Optional

import numpy as np

DEFAULT_SAMPLE_RATE = 16000
DEFAULT_CHUNK_SIZE = 4800  # 300ms at 16kHz
DEFAULT_SPEECH_THRESHOLD = 0.001  # soft conference speech must pass the gate


def calculate_rms(samples: np.ndarray) -> float:
    """Root-mean-square energy of a float sample buffer. Empty input is 0.0."""
    if samples.size == 0:
        return 0.0
    values = samples.astype(np.float64, copy=False)
    return float(np.sqrt(np.mean(values * values)))


def rms_to_db(rms: float) -> float:
    """Convert an RMS amplitude to dBFS; zero maps to -inf."""
    if rms <= 0:
        return float("-inf")
    return float(20 * np.log10(rms))


def detect_voice_activity(samples: np.ndarray, threshold: float = DEFAULT_SPEECH_THRESHOLD) -> bool:
    """True when the chunk's RMS is strictly above the threshold."""
    return calculate_rms(samples) > threshold


def float_to_int16(samples: np.ndarray) -> np.ndarray:
    """
    Convert float samples to signed 16-bit PCM.

    Values are clamped to [-1, 1]; negatives scale by 32768 and positives by
    32767 so both ends of the range are reachable. Fractions truncate toward zero.
    """
    clipped = np.clip(samples.astype(np.float64, copy=False), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return scaled.astype(np.int16)


def int16_to_float(samples: np.ndarray) -> np.ndarray:
    """Convert signed 16-bit PCM to float32 in [-1, 1)."""
    return samples.astype(np.float32) / 32768.0


class AudioChunker:
    """
    Fixed-capacity accumulator that emits full chunks.

    Every emitted chunk has exactly ``chunk_size`` samples; a remainder
    smaller than a chunk stays buffered until more samples arrive or
    ``flush()`` is called.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self._buffer = np.zeros(chunk_size, dtype=np.float32)
        self._write_index = 0

    @property
    def pending(self) -> int:
        """Samples buffered but not yet emitted."""
        return self._write_index

    def add_samples(self, samples: np.ndarray) -> List[np.ndarray]:
        """
        Append samples and return every chunk completed by them, in order.
        """
        chunks: List[np.ndarray] = []
        offset = 0
        total = len(samples)

        while offset < total:
            take = min(self.chunk_size - self._write_index, total - offset)
            self._buffer[self._write_index:self._write_index + take] = samples[offset:offset + take]
            self._write_index += take
            offset += take

            if self._write_index == self.chunk_size:
                chunks.append(self._buffer.copy())
                self._write_index = 0

        return chunks

    def flush(self) -> Optional[np.ndarray]:
        """Return the buffered remainder (shorter than a chunk), or None if empty."""
        if self._write_index == 0:
            return None
        remainder = self._buffer[:self._write_index].copy()
        self._write_index = 0
        return remainder

    def reset(self) -> None:
        """Discard buffered samples."""
        self._write_index = 0
