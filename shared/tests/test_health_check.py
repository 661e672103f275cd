"""
Tests for Redis health checks.
"""

import pytest
from shared.health_check import check_redis_health


class TestRedisHealth:

    @pytest.mark.asyncio
    async def test_healthy(self, mock_redis_client):
        result = await check_redis_health(mock_redis_client)

        assert result.is_healthy()
        assert result.details["version"] == "7.2.4"
        assert result.details["uptime_seconds"] == 3600
        assert result.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_ping_failure_is_unhealthy(self, mock_redis_client):
        """Test a failed PING."""
        mock_redis_client.ping.side_effect = ConnectionError("Connection refused")

        result = await check_redis_health(mock_redis_client)

        assert result.status == "unhealthy"
        assert "PING" in result.details["error"]

    @pytest.mark.asyncio
    async def test_info_failure_is_degraded(self, mock_redis_client):
        mock_redis_client.info.side_effect = RuntimeError("NOPERM")

        result = await check_redis_health(mock_redis_client)

        assert result.status == "degraded"

    @pytest.mark.asyncio
    async def test_to_dict(self, mock_redis_client):
        result = (await check_redis_health(mock_redis_client)).to_dict()

        assert result["service_name"] == "redis"
        assert result["status"] == "healthy"
