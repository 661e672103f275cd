"""
Health Check Utilities for the transcription services

All health checks return HealthCheckResult with standardized status codes:
- "healthy": Service is fully operational
- "degraded": Service is running but with issues
- "unhealthy": Service is not functional

Usage:
    from shared.health_check import check_redis_health

    result = await check_redis_health(redis_client)
    if result.is_healthy():
        print(f"Redis is healthy (latency: {result.latency_ms}ms)")
"""

import logging
import time
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict

from .redis_client import get_redis_client, ping_redis, get_redis_info

# Module-level logger
logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    """
    Standardized health check result.

    Attributes:
        service_name: Name of the service being checked
        status: "healthy", "unhealthy", or "degraded"
        latency_ms: Response time in milliseconds
        details: Additional information (error messages, metrics, etc.)
        timestamp: Unix timestamp when check was performed
    """
    service_name: str
    status: str
    latency_ms: float
    details: Dict[str, Any]
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)

    def is_healthy(self) -> bool:
        """Check if service is healthy"""
        return self.status == "healthy"


async def check_redis_health(redis_client: Optional[Any] = None) -> HealthCheckResult:
    """
    Check Redis connectivity and performance.

    Args:
        redis_client: Redis client instance (optional, uses the shared singleton if not provided)

    Returns:
        HealthCheckResult: Health check result with Redis metrics
    """
    start_time = time.time()
    service_name = "redis"

    try:
        if redis_client is None:
            redis_client = await get_redis_client()

        if not await ping_redis(redis_client):
            return HealthCheckResult(
                service_name=service_name,
                status="unhealthy",
                latency_ms=(time.time() - start_time) * 1000,
                details={"error": "PING command failed"},
                timestamp=time.time(),
            )

        info = await get_redis_info(redis_client)
        latency_ms = (time.time() - start_time) * 1000

        status = "degraded" if "error" in info else "healthy"

        return HealthCheckResult(
            service_name=service_name,
            status=status,
            latency_ms=latency_ms,
            details={
                "version": info.get("redis_version", "unknown"),
                "uptime_seconds": info.get("uptime_seconds", 0),
                "connected_clients": info.get("connected_clients", 0),
                "used_memory": info.get("used_memory_human", "unknown"),
            },
            timestamp=time.time(),
        )

    except Exception as e:
        latency_ms = (time.time() - start_time) * 1000
        logger.error(f"Redis health check failed: {e}")
        return HealthCheckResult(
            service_name=service_name,
            status="unhealthy",
            latency_ms=latency_ms,
            details={"error": str(e)},
            timestamp=time.time(),
        )
