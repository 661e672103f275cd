"""
Tests for EventBroker Redis Streams / pub/sub wrapper.
"""

import json

import pytest
from shared.event_broker import EventBroker


class TestEventBroker:
    """Tests for EventBroker class."""

    @pytest.fixture
    def broker(self, mock_redis_client):
        """Create an EventBroker instance with mock Redis."""
        return EventBroker(mock_redis_client)

    @pytest.mark.asyncio
    async def test_publish_event(self, broker, mock_redis_client, sample_service_event):
        """Test publishing an event to a stream."""
        stream_key = "transcriber:room:standup:transcripts"

        result = await broker.publish(stream_key, sample_service_event)

        assert result == "1234567890-0"
        call_args = mock_redis_client.xadd.call_args
        assert call_args[0][0] == stream_key
        assert call_args[0][1]["room_id"] == "standup"
        assert call_args[1]["approximate"] is True

    @pytest.mark.asyncio
    async def test_publish_with_max_len(self, broker, mock_redis_client, sample_service_event):
        """Test publishing with max stream length."""
        await broker.publish("transcriber:sessions", sample_service_event, max_len=5000)

        assert mock_redis_client.xadd.call_args[1]["maxlen"] == 5000

    @pytest.mark.asyncio
    async def test_publish_error_propagates(self, broker, mock_redis_client, sample_service_event):
        """Redis failures are logged and re-raised."""
        mock_redis_client.xadd.side_effect = ConnectionError("Connection refused")

        with pytest.raises(ConnectionError):
            await broker.publish("transcriber:sessions", sample_service_event)

    @pytest.mark.asyncio
    async def test_broadcast(self, broker, mock_redis_client, sample_service_event):
        """Test broadcasting on a pub/sub channel."""
        receivers = await broker.broadcast("room:standup:transcript", sample_service_event)

        assert receivers == 2
        channel, message = mock_redis_client.publish.call_args[0]
        assert channel == "room:standup:transcript"
        assert json.loads(message)["payload"]["text"] == "Hello world"

    @pytest.mark.asyncio
    async def test_broadcast_error_propagates(self, broker, mock_redis_client, sample_service_event):
        mock_redis_client.publish.side_effect = ConnectionError("Connection refused")

        with pytest.raises(ConnectionError):
            await broker.broadcast("room:standup:transcript", sample_service_event)

    @pytest.mark.asyncio
    async def test_expire(self, broker, mock_redis_client):
        """Test applying retention to a stream."""
        assert await broker.expire("transcriber:room:standup:transcripts", 86400) is True
        mock_redis_client.expire.assert_awaited_once_with("transcriber:room:standup:transcripts", 86400)
