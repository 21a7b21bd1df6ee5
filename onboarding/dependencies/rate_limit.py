"""
Rate-limit dependencies, evaluated before any handler touches state.
"""

from typing import Optional

from fastapi import Depends, Request
from redis.asyncio import Redis

from onboarding.config import get_settings
from onboarding.contracts.member import Actor
from onboarding.dependencies.auth import get_current_actor
from onboarding.dependencies.redis_client import get_redis_client
from onboarding.services.rate_limit import RateLimiter


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def rate_limited(operation: str, guard=get_current_actor):
    """Per-actor limit for authenticated operations; ``guard`` resolves and authorizes the actor first."""

    async def dependency(
        request: Request,
        actor: Actor = Depends(guard),
        redis: Optional[Redis] = Depends(get_redis_client),
    ) -> Actor:
        limiter = RateLimiter(redis, enabled=get_settings().rate_limit_enabled)
        await limiter.check(operation, str(actor.user_id), client_ip(request))
        return actor

    return dependency


def anonymous_rate_limited(operation: str):
    """IP-keyed limit for endpoints reached without a bearer token."""

    async def dependency(
        request: Request,
        redis: Optional[Redis] = Depends(get_redis_client),
    ) -> None:
        limiter = RateLimiter(redis, enabled=get_settings().rate_limit_enabled)
        await limiter.check(operation, None, client_ip(request))

    return dependency
