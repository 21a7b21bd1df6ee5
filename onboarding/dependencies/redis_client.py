from typing import Optional

from fastapi import Request
from redis.asyncio import Redis


def get_redis_client(request: Request) -> Optional[Redis]:
    """Shared client from app state; None when Redis was not configured or reachable."""
    return getattr(request.app.state, "redis_client", None)
