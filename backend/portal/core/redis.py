# portal/core/redis.py
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from redis import Redis
from redis.exceptions import RedisError

from portal.core.config import settings
from portal.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

_client: Redis | None = None
_lock = threading.Lock()


def _build_client() -> Redis:
    if not settings.REDIS_URL:
        raise RuntimeError("REDIS_URL must be set")
    # Explicit timeouts so a stalled Redis surfaces as an error instead of hanging the request.
    return Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.REDIS_CONNECT_TIMEOUT_SECONDS,
        health_check_interval=30,
    )


def get_redis() -> Redis:
    """Process-wide Redis client (FastAPI dependency). Connections are pooled by redis-py."""
    global _client
    if _client is None:
        with _lock:
            if _client is None:
                _client = _build_client()
    return _client


@contextmanager
def redis_guard(operation: str) -> Iterator[None]:
    """Map any redis-py failure (connection refused, timeout, bad reply) to a 503."""
    try:
        yield
    except RedisError as exc:
        logger.error("Redis unavailable during %s: %s", operation, exc.__class__.__name__)
        raise ServiceUnavailableError("Session store unavailable") from exc
