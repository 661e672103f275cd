"""
Async Redis client for the transcription services.

One client per process, created on first use and closed at shutdown. The
client owns its connection pool, so closing it releases every connection.

Environment:
    TRANSCRIBER_REDIS_URL / REDIS_URL     full connection URL (wins over the parts below)
    TRANSCRIBER_REDIS_HOST                default localhost
    TRANSCRIBER_REDIS_PORT                default 6379
    TRANSCRIBER_REDIS_DB                  default 0
    TRANSCRIBER_REDIS_PASSWORD            optional
    TRANSCRIBER_REDIS_MAX_CONNECTIONS     default 50
    TRANSCRIBER_REDIS_SOCKET_TIMEOUT      seconds, default 10
    TRANSCRIBER_REDIS_CONNECT_ATTEMPTS    default 3
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None
_lock = asyncio.Lock()

INFO_FIELDS = {
    "redis_version": "redis_version",
    "uptime_in_seconds": "uptime_seconds",
    "connected_clients": "connected_clients",
    "used_memory_human": "used_memory_human",
    "instantaneous_ops_per_sec": "instantaneous_ops_per_sec",
}


@dataclass
class RedisConfig:
    url: str = "redis://localhost:6379/0"
    max_connections: int = 50
    socket_timeout: float = 10.0
    connect_attempts: int = 3
    retry_backoff_s: float = 1.0       # doubled after every failed attempt

    @staticmethod
    def from_env() -> 'RedisConfig':
        url = os.getenv("TRANSCRIBER_REDIS_URL") or os.getenv("REDIS_URL")
        if not url:
            password = os.getenv("TRANSCRIBER_REDIS_PASSWORD")
            auth = f":{password}@" if password else ""
            url = (
                f"redis://{auth}{os.getenv('TRANSCRIBER_REDIS_HOST', 'localhost')}:"
                f"{os.getenv('TRANSCRIBER_REDIS_PORT', '6379')}/"
                f"{os.getenv('TRANSCRIBER_REDIS_DB', '0')}"
            )

        return RedisConfig(
            url=url,
            max_connections=int(os.getenv("TRANSCRIBER_REDIS_MAX_CONNECTIONS", "50")),
            socket_timeout=float(os.getenv("TRANSCRIBER_REDIS_SOCKET_TIMEOUT", "10.0")),
            connect_attempts=max(1, int(os.getenv("TRANSCRIBER_REDIS_CONNECT_ATTEMPTS", "3"))),
        )

    def safe_url(self) -> str:
        """URL with any password masked, for logging."""
        if "@" not in self.url:
            return self.url
        scheme, rest = self.url.split("://", 1)
        return f"{scheme}://***@{rest.split('@', 1)[1]}"


async def _connect(config: RedisConfig) -> redis.Redis:
    # decode_responses: settings hashes and stream fields are all text
    client = redis.from_url(
        config.url,
        max_connections=config.max_connections,
        socket_timeout=config.socket_timeout,
        socket_connect_timeout=config.socket_timeout,
        decode_responses=True,
    )

    delay = config.retry_backoff_s
    for attempt in range(1, config.connect_attempts + 1):
        try:
            await client.ping()
            logger.info(f"✅ Redis connected: {config.safe_url()}")
            return client
        except RedisConnectionError as e:
            if attempt == config.connect_attempts:
                logger.error(f"❌ Redis unreachable after {attempt} attempts: {e}")
                await client.aclose()
                raise
            logger.warning(f"⚠️ Redis attempt {attempt}/{config.connect_attempts} failed: {e}. Retrying in {delay}s")
            await asyncio.sleep(delay)
            delay *= 2


async def get_redis_client(config: Optional[RedisConfig] = None) -> redis.Redis:
    """
    Return the process-wide client, connecting on first call.

    Raises:
        RedisConnectionError: if every connect attempt failed
    """
    global _client

    async with _lock:
        if _client is None:
            _client = await _connect(config or RedisConfig.from_env())
        return _client


async def ping_redis(client: Optional[redis.Redis] = None) -> bool:
    try:
        if client is None:
            client = await get_redis_client()
        return await client.ping() is True
    except Exception as e:
        logger.error(f"Redis PING failed: {e}")
        return False


async def get_redis_info(client: Optional[redis.Redis] = None) -> Dict[str, Any]:
    """Selected INFO fields, or ``{"error": ...}`` when INFO is unavailable."""
    try:
        if client is None:
            client = await get_redis_client()
        info = await client.info()
    except Exception as e:
        logger.error(f"Failed to get Redis info: {e}")
        return {"error": str(e)}
    return {name: info.get(field) for field, name in INFO_FIELDS.items()}


async def close_redis_client() -> None:
    global _client

    async with _lock:
        if _client is None:
            return
        try:
            await _client.aclose()
            logger.info("Redis client closed")
        except Exception as e:
            logger.error(f"Error closing Redis client: {e}")
        finally:
            _client = None
