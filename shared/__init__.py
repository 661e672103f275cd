"""
Shared Utilities Module for the transcription services

This module provides common utilities used across the services:
- Process-wide async Redis client
- Event schema and Redis Streams / pub/sub broker
- Health check utilities for Redis
- Prometheus metrics and JSON structured logging

Usage:
    from shared import get_redis_client, check_redis_health

    redis = await get_redis_client()
    health = await check_redis_health(redis)
    print(f"Redis status: {health.status}")
"""

from .redis_client import (
    get_redis_client,
    close_redis_client,
    ping_redis,
    get_redis_info,
    RedisConfig,
)

from .health_check import (
    check_redis_health,
    HealthCheckResult,
)

from .events import (
    ServiceEvent,
    EventTypes,
)

from .event_broker import (
    EventBroker,
)

from .structured_logger import (
    StructuredLogger,
)

from .observability import (
    setup_metrics,
    get_metrics_response,
    MetricTimer,
)

__all__ = [
    # Redis client utilities
    "get_redis_client",
    "close_redis_client",
    "ping_redis",
    "get_redis_info",
    "RedisConfig",
    # Health check utilities
    "check_redis_health",
    "HealthCheckResult",
    # Event utilities
    "ServiceEvent",
    "EventTypes",
    "EventBroker",
    # Logging
    "StructuredLogger",
    # Observability utilities
    "setup_metrics",
    "get_metrics_response",
    "MetricTimer",
]
