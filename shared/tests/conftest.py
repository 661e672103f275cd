"""
Pytest fixtures for shared module tests.
"""

import pytest
from unittest.mock import AsyncMock
import sys
import os

# Add parent directories to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))


@pytest.fixture
def mock_redis_client():
    """Create a mock Redis client."""
    client = AsyncMock()

    # Mock common methods
    client.xadd = AsyncMock(return_value="1234567890-0")
    client.publish = AsyncMock(return_value=2)
    client.expire = AsyncMock(return_value=True)
    client.ping = AsyncMock(return_value=True)
    client.info = AsyncMock(return_value={
        "redis_version": "7.2.4",
        "uptime_in_seconds": 3600,
        "connected_clients": 4,
        "used_memory_human": "1.2M",
    })

    return client


@pytest.fixture
def sample_service_event():
    """Create a sample transcript ServiceEvent for testing."""
    from shared.events import ServiceEvent

    return ServiceEvent(
        event_type="transcriber.transcript.final",
        room_id="standup",
        source="test_service",
        payload={"participant_id": "alice", "text": "Hello world", "is_final": True, "confidence": 0.95},
        metadata={"language": "en"}
    )


@pytest.fixture
def sample_event_dict():
    """Create a sample event as a Redis-compatible dict."""
    return {
        "event_type": "transcriber.transcript.final",
        "room_id": "standup",
        "source": "test_service",
        "timestamp": "1234567890.123",
        "correlation_id": "abc-123-def",
        "payload": '{"text": "Hello world", "confidence": 0.95}',
        "metadata": '{"language": "en"}'
    }
