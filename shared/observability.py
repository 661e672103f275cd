"""
Observability Module for the transcription services

Provides:
- Prometheus metrics for monitoring rooms, participants and audio gating
- Recording helpers so call sites never touch metric objects directly
- A timing context manager for histograms
"""

import os
import time
import logging
from typing import Dict, Optional

from prometheus_client import (
    Counter, Histogram, Gauge, Info,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY
)

logger = logging.getLogger(__name__)

_metrics_initialized = False


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

# Gauges
ACTIVE_ROOMS = Gauge(
    'transcriber_active_rooms',
    'Number of rooms with an active transcription bot'
)

ACTIVE_PARTICIPANTS = Gauge(
    'transcriber_active_participants',
    'Number of participants with an audio handler'
)

# Counters
AUDIO_CHUNKS_TOTAL = Counter(
    'transcriber_audio_chunks_total',
    'Audio chunks seen by the voice activity gate',
    ['result']  # speech | silence | dropped
)

SPEECH_SECONDS_TOTAL = Counter(
    'transcriber_speech_seconds_total',
    'Seconds of speech audio forwarded to the transcription engine'
)

STREAM_RECONNECTS_TOTAL = Counter(
    'transcriber_stream_reconnects_total',
    'Lazy transcription stream reconnect attempts',
    ['outcome']  # success | failure
)

ROOM_JOINS_TOTAL = Counter(
    'transcriber_room_joins_total',
    'Room join outcomes',
    ['outcome']  # success | failure
)

TRANSCRIPTS_TOTAL = Counter(
    'transcriber_transcripts_total',
    'Finalized transcript events delivered'
)

FORWARD_ERRORS_TOTAL = Counter(
    'transcriber_forward_errors_total',
    'Failed downstream transcript forwards',
    ['target']
)

# Histograms
ROOM_JOIN_DURATION = Histogram(
    'transcriber_room_join_duration_seconds',
    'Time from start request to joined room, including retries',
    buckets=(0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0)
)

# Service info
SERVICE_INFO = Info(
    'transcriber_service',
    'Service information'
)


def setup_metrics(service_name: str, service_version: str = "1.0.0"):
    """
    Setup Prometheus metrics for a service.

    Args:
        service_name: Name of the service
        service_version: Version string
    """
    global _metrics_initialized

    if _metrics_initialized:
        return

    SERVICE_INFO.info({
        'service': service_name,
        'version': service_version,
        'environment': os.getenv('DEPLOYMENT_ENV', 'development')
    })
    _metrics_initialized = True
    logger.info(f"✅ Prometheus metrics initialized for {service_name}")


def get_metrics_response():
    """
    Get Prometheus metrics as HTTP response content.

    Returns:
        Tuple of (content_bytes, content_type) for HTTP response
    """
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


# =============================================================================
# Metric Recording Utilities
# =============================================================================

def set_active_rooms(count: int):
    ACTIVE_ROOMS.set(count)


def participant_added():
    ACTIVE_PARTICIPANTS.inc()


def participant_removed():
    ACTIVE_PARTICIPANTS.dec()


def record_audio_chunk(result: str, duration_seconds: float = 0.0):
    """Record one gated chunk; speech duration only counts forwarded chunks."""
    AUDIO_CHUNKS_TOTAL.labels(result=result).inc()
    if result == "speech" and duration_seconds > 0:
        SPEECH_SECONDS_TOTAL.inc(duration_seconds)


def record_stream_reconnect(success: bool):
    STREAM_RECONNECTS_TOTAL.labels(outcome="success" if success else "failure").inc()


def record_room_join(success: bool):
    ROOM_JOINS_TOTAL.labels(outcome="success" if success else "failure").inc()


def record_transcript():
    TRANSCRIPTS_TOTAL.inc()


def record_forward_error(target: str):
    FORWARD_ERRORS_TOTAL.labels(target=target).inc()


# =============================================================================
# Context Manager for Timing
# =============================================================================

class MetricTimer:
    """
    Observe the wall time of a block on a histogram.

    Works as a sync or async context manager; ``elapsed`` holds the last
    measured duration in seconds, even when the block raised.
    """

    def __init__(self, histogram, labels: Optional[Dict[str, str]] = None):
        self.histogram = histogram
        self.labels = labels or {}
        self.elapsed: Optional[float] = None
        self._start: Optional[float] = None

    def _begin(self):
        self._start = time.perf_counter()
        return self

    def _end(self):
        self.elapsed = time.perf_counter() - self._start
        target = self.histogram.labels(**self.labels) if self.labels else self.histogram
        target.observe(self.elapsed)

    def __enter__(self):
        return self._begin()

    def __exit__(self, *exc):
        self._end()

    async def __aenter__(self):
        return self._begin()

    async def __aexit__(self, *exc):
        self._end()


def time_room_join():
    """Timer for room joins, retries included."""
    return MetricTimer(ROOM_JOIN_DURATION)
