# portal/dependencies/rate_limit.py
from __future__ import annotations

import json
import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from redis import Redis

from portal.core.redis import get_redis
from portal.services.rate_limiter import RateLimitResult, build_rate_limiter

logger = logging.getLogger(__name__)


def require_rate_limit(route_key: str, *, limit: int, window_seconds: int = 60) -> Callable:
    resolved_limit = max(1, limit)
    resolved_window = max(1, window_seconds)

    def dependency(request: Request, redis: Redis = Depends(get_redis)) -> None:
        limiter = build_rate_limiter(redis)
        result = limiter.check(
            identifier=_resolve_identifier(request),
            route_key=route_key,
            limit=resolved_limit,
            window_seconds=resolved_window,
        )
        _log_decision(request=request, result=result, route_key=route_key)
        if not result.allowed:
            retry_after = max(1, result.retry_after_seconds)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "message": "Too many requests",
                    "details": {
                        "retry_after_seconds": retry_after,
                        "limit": result.limit,
                        "remaining": result.remaining,
                    },
                },
                headers={"Retry-After": str(retry_after)},
            )

    return dependency


def _resolve_identifier(request: Request) -> str:
    # Auth routes are hit before a session exists, so the client address is the only stable key.
    client = request.client
    host = (client.host if client else None) or "unknown"
    return f"ip:{host}"


def _log_decision(*, request: Request, result: RateLimitResult, route_key: str) -> None:
    if result.limiter_key.startswith("noop:"):
        return
    payload = {
        "route": request.url.path,
        "http_method": request.method,
        "route_key": route_key,
        "window_seconds": result.window_seconds,
        "limit": result.limit,
        "current_count": result.count,
        "remaining": result.remaining,
        "reset_epoch": result.window_reset_epoch,
        "decision": "allow" if result.allowed else "block",
    }
    logger.info(json.dumps(payload, separators=(",", ":")))
