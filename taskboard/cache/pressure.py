import asyncio
import logging

from redis.asyncio import Redis, RedisError

logger = logging.getLogger(__name__)


class RedisMemoryGuard:
    """
    Monitors Redis memory usage and provides backpressure signals.

    Pressure levels:
    - 0-4: Normal operation
    - 5-6: Moderate pressure (reduce TTL by 20%)
    - 7-8: High pressure (cap TTL at 60s)
    - 9-10: Critical (skip Redis writes, L1 only)
    """

    def __init__(self, redis: Redis, refresh_interval: int = 5):
        self.redis = redis
        self.refresh_interval = refresh_interval
        self._last_check = 0.0
        self.last_reading: dict | None = None

    async def check(self) -> dict:
        """Check memory pressure, reusing the last reading within the refresh interval."""
        now = asyncio.get_running_loop().time()
        if self.last_reading and (now - self._last_check) < self.refresh_interval:
            return self.last_reading

        try:
            info = await self.redis.info("memory")
        except RedisError as e:
            logger.error(f"Memory check failed: {e}")
            return {"level": 0, "ratio": None, "policy": "unknown", "error": str(e)}

        used = info["used_memory"]
        maxm = info.get("maxmemory", 0)
        policy = info.get("maxmemory_policy", "noeviction")

        if maxm == 0:
            # No memory limit configured
            reading = {"level": 0, "ratio": None, "policy": policy}
        else:
            ratio = used / maxm
            reading = {
                "level": int(min(ratio * 10, 10)),
                "ratio": ratio,
                "policy": policy,
                "max_mb": maxm / (1024 * 1024),
            }
            if reading["level"] >= 9:
                logger.warning(f"Redis memory critical: {ratio:.1%} ({policy})")
            elif reading["level"] >= 7:
                logger.info(f"Redis memory high: {ratio:.1%}")
        reading["used_mb"] = used / (1024 * 1024)

        self.last_reading = reading
        self._last_check = now
        return reading

    async def adjust_ttl(self, base_ttl: int) -> int:
        """Scale a TTL to current pressure; 0 means do not write to Redis."""
        level = (await self.check())["level"]
        if level >= 9:
            return 0
        if level >= 7:
            return min(base_ttl, 60)
        if level >= 5:
            return max(int(base_ttl * 0.8), 1)
        return base_ttl
