# portal/services/rate_limiter.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from redis import Redis
from redis.exceptions import RedisError

from portal.core.config import settings

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY_PREFIX = "rate:"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int
    limit: int
    remaining: int
    count: int
    window_reset_epoch: int
    limiter_key: str
    window_seconds: int


class RateLimiter(Protocol):
    def check(
        self,
        *,
        identifier: str,
        route_key: str,
        limit: int,
        window_seconds: int,
        now: int | None = None,
    ) -> RateLimitResult:
        ...


class NoopRateLimiter:
    """
    Disabled limiter that always allows requests. Used when rate limiting is turned off.
    """

    def check(
        self,
        *,
        identifier: str,
        route_key: str,
        limit: int,
        window_seconds: int,
        now: int | None = None,
    ) -> RateLimitResult:
        now_ts = int(now or time.time())
        return RateLimitResult(
            allowed=True,
            retry_after_seconds=0,
            limit=limit,
            remaining=max(0, limit),
            count=0,
            window_reset_epoch=now_ts + window_seconds,
            limiter_key=f"noop:{route_key}:window:{window_seconds}",
            window_seconds=window_seconds,
        )


class RedisRateLimiter:
    """
    Fixed-window counter: INCR rate:<route>:<identifier>:<window_start> and let
    the key expire with the window. Shared by every API instance.

    Fails open: if Redis cannot be reached the request is allowed and the
    error is logged. Authentication itself still fails closed on the session store.
    """

    def __init__(self, client: Redis) -> None:
        self.client = client

    def check(
        self,
        *,
        identifier: str,
        route_key: str,
        limit: int,
        window_seconds: int,
        now: int | None = None,
    ) -> RateLimitResult:
        now_ts = int(now or time.time())
        window_start = now_ts - (now_ts % window_seconds)
        reset_epoch = window_start + window_seconds
        limiter_key = f"{RATE_LIMIT_KEY_PREFIX}{route_key}:{identifier}:{window_start}"

        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(limiter_key)
            pipe.expire(limiter_key, window_seconds)
            count, _ = pipe.execute()
        except RedisError as exc:
            logger.warning("Rate limiter unavailable (%s); allowing request", exc.__class__.__name__)
            return NoopRateLimiter().check(
                identifier=identifier,
                route_key=route_key,
                limit=limit,
                window_seconds=window_seconds,
                now=now_ts,
            )

        count = int(count)
        allowed = count <= limit
        return RateLimitResult(
            allowed=allowed,
            retry_after_seconds=0 if allowed else max(1, reset_epoch - now_ts),
            limit=limit,
            remaining=max(0, limit - count),
            count=count,
            window_reset_epoch=reset_epoch,
            limiter_key=limiter_key,
            window_seconds=window_seconds,
        )


def build_rate_limiter(client: Redis) -> RateLimiter:
    if not settings.ENABLE_RATE_LIMITING:
        return NoopRateLimiter()
    return RedisRateLimiter(client)
