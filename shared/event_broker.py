"""
Redis Streams Event Broker Wrapper.

Provides a simplified async interface for persisting events on Redis Streams
and broadcasting them to live subscribers over Redis pub/sub.
"""

import logging
import redis.asyncio as redis
from .events import ServiceEvent

logger = logging.getLogger(__name__)


class EventBroker:
    """
    Wrapper around Redis Streams and pub/sub for transcription events.
    """
    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def publish(self, stream_key: str, event: ServiceEvent, max_len: int = 10000) -> str:
        """
        Publish an event to a Redis Stream.

        Args:
            stream_key: The Redis key for the stream (e.g., "transcriber:room:standup:transcripts")
            event: ServiceEvent object
            max_len: Maximum stream length (older entries are trimmed)

        Returns:
            The message ID of the published event.
        """
        try:
            data = event.to_redis_dict()
            message_id = await self.redis.xadd(stream_key, data, maxlen=max_len, approximate=True)
            return message_id
        except Exception as e:
            logger.error(f"Failed to publish event to {stream_key}: {e}")
            raise

    async def broadcast(self, channel: str, event: ServiceEvent) -> int:
        """
        Broadcast an event on a pub/sub channel.

        Returns:
            Number of subscribers that received the message.
        """
        try:
            return await self.redis.publish(channel, event.to_json())
        except Exception as e:
            logger.error(f"Failed to broadcast event on {channel}: {e}")
            raise

    async def expire(self, stream_key: str, seconds: int) -> bool:
        """Apply a retention TTL to a stream."""
        return bool(await self.redis.expire(stream_key, seconds))
