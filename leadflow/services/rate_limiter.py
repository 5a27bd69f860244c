"""
Rate Limiter Service using Redis sorted sets (sliding window).
"""
import time
import redis.asyncio as redis
from leadflow.config import settings
from leadflow.logging_config import get_logger

log = get_logger(component="rate_limiter")


class RateLimiter:
    """Per-client, per-policy rate limiter using Redis sorted sets."""
    
    def __init__(self, redis_url: str = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self._redis = None
    
    async def get_redis(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis
    
    async def is_allowed(self, policy: str, client_id: str, limit: int, window: int = 60) -> tuple[bool, int]:
        """
        Check if request is allowed for the client under a policy.
        
        Args:
            policy: Policy name, e.g. "retry" or "webhook-test"
            client_id: Caller identity (client IP)
            limit: Requests allowed per window
            window: Window length in seconds
        
        Returns:
            (allowed: bool, retry_after: int)
        """
        key = f"ratelimit:{policy}:{client_id}"
        now = time.time()
        window_start = now - window
        
        try:
            r = await self.get_redis()
            # First, clean up old entries and count current requests
            pipe = r.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            results = await pipe.execute()
            
            request_count = results[1]
            
            # Check if under limit FIRST
            if request_count >= limit:
                # Over limit - calculate retry_after
                oldest = await r.zrange(key, 0, 0, withscores=True)
                if oldest:
                    retry_after = int(window - (now - oldest[0][1]))
                else:
                    retry_after = window
                return False, max(retry_after, 1)
            
            # Under limit - add the request
            await r.zadd(key, {str(now): now})
            await r.expire(key, window)
            
            return True, 0
            
        except Exception as e:
            log.warning("rate_limiter_unavailable", policy=policy, error=str(e))
            # If Redis is down, allow the request (fail open)
            return True, 0


# Singleton instance
rate_limiter = RateLimiter()
