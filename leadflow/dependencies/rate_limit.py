"""
Rate limit dependencies for FastAPI routes.
"""
from fastapi import Request, HTTPException

from leadflow.config import settings
from leadflow.routes.metrics import track_rate_limit_exceeded
from leadflow.services.rate_limiter import rate_limiter


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def check_rate_limit(request: Request, policy: str, limit: int, window: int = 60):
    """
    Check rate limit for the calling client under a policy.
    
    Raises 429 if limit exceeded.
    """
    allowed, retry_after = await rate_limiter.is_allowed(policy, client_ip(request), limit, window)
    
    if not allowed:
        track_rate_limit_exceeded(policy)
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after)}
        )


async def retry_rate_limit(request: Request):
    """30 manual retries per minute per client."""
    await check_rate_limit(request, "retry", settings.RATE_LIMIT_RETRY_PER_MINUTE)


async def webhook_test_rate_limit(request: Request):
    """20 webhook tests per minute per client."""
    await check_rate_limit(request, "webhook-test", settings.RATE_LIMIT_WEBHOOK_TEST_PER_MINUTE)
