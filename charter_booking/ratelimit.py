"""
Rate limiting for public submission endpoints
Redis sliding window per client IP and path (default 5 req/min)
"""

import logging
from fastapi import Depends, HTTPException, Request

from .config import SUBMIT_RATE_LIMIT, SUBMIT_RATE_WINDOW_SECONDS
from .redis_service import RedisService, get_redis

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not ip:
        ip = request.headers.get("X-Real-IP", "")
    if not ip:
        ip = getattr(request.client, "host", None) or "unknown"
    return ip


def rate_limit(limit: int = SUBMIT_RATE_LIMIT, window: int = SUBMIT_RATE_WINDOW_SECONDS):
    """
    Build a FastAPI dependency enforcing `limit` requests per `window`
    seconds for each client IP on the route it guards.
    """
    async def dependency(request: Request, redis: RedisService = Depends(get_redis)) -> None:
        ip = client_ip(request)
        endpoint = request.url.path
        try:
            current_count = await redis.hit_rate_window(f"{ip}:{endpoint}", window)
        except Exception as e:
            logger.error(f"Rate limiting error: {e}")
            # Continue without rate limiting if Redis fails
            return

        if current_count >= limit:
            logger.warning(f"Rate limit exceeded for {ip} on {endpoint}")
            raise HTTPException(
                status_code=429,
                detail={
                    "error": "RATE_LIMITED",
                    "limit": limit,
                    "window": window,
                    "message": f"Too many requests. Limit: {limit} requests per {window} seconds."
                }
            )

    return dependency
