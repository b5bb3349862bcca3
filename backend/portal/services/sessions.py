# portal/services/sessions.py
"""
Refresh-token sessions in Redis.

Layout:
- session:<refresh_token>    JSON {"user_id", "created_at"} with the session TTL
- user_sessions:<user_id>    set of that user's refresh tokens (for revoke-all)

Redis is the only source of truth for session validity; nothing is cached in
process. Every public method turns redis-py failures into
ServiceUnavailableError, there is no degraded mode.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from redis import Redis

from portal.core.config import settings
from portal.core.redis import redis_guard
from portal.core.security import token_fingerprint

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"
USER_SESSIONS_KEY_PREFIX = "user_sessions:"

_SCAN_BATCH = 500


@dataclass(frozen=True)
class SessionRecord:
    refresh_token: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    @property
    def fingerprint(self) -> str:
        return token_fingerprint(self.refresh_token)


def session_key(refresh_token: str) -> str:
    return f"{SESSION_KEY_PREFIX}{refresh_token}"


def user_sessions_key(user_id: str) -> str:
    return f"{USER_SESSIONS_KEY_PREFIX}{user_id}"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    def __init__(self, client: Redis, *, default_ttl_seconds: int | None = None) -> None:
        self.client = client
        self.default_ttl_seconds = default_ttl_seconds or settings.refresh_token_ttl_seconds

    # -------------------------
    # Encoding
    # -------------------------
    def _decode(self, refresh_token: str, raw: str, ttl: int) -> SessionRecord | None:
        now = _now_utc()
        expires_at = now + timedelta(seconds=ttl)
        try:
            data = json.loads(raw)
        except ValueError:
            data = None

        if isinstance(data, dict):
            user_id = data.get("user_id")
            try:
                created_at = datetime.fromisoformat(data["created_at"])
            except (KeyError, TypeError, ValueError):
                created_at = expires_at - timedelta(seconds=self.default_ttl_seconds)
        else:
            # Plain user-id value: creation time is approximated from the default TTL.
            user_id = raw
            created_at = expires_at - timedelta(seconds=self.default_ttl_seconds)

        if not isinstance(user_id, str) or not user_id.strip():
            logger.warning("Discarding unreadable session record %s", token_fingerprint(refresh_token))
            return None

        return SessionRecord(
            refresh_token=refresh_token,
            user_id=user_id,
            created_at=created_at,
            expires_at=expires_at,
        )

    def _index_ttl(self, ttl_seconds: int) -> int:
        # The per-user index must outlive every session it lists.
        return max(ttl_seconds, self.default_ttl_seconds)

    # -------------------------
    # Single session
    # -------------------------
    def create(self, user_id: str, refresh_token: str, ttl_seconds: int | None = None) -> SessionRecord:
        """Write (or overwrite) the mapping for one refresh token."""
        ttl = int(ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds)
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        if not user_id or not refresh_token:
            raise ValueError("user_id and refresh_token are required")

        created_at = _now_utc()
        payload = json.dumps({"user_id": user_id, "created_at": created_at.isoformat()})

        with redis_guard("session create"):
            pipe = self.client.pipeline(transaction=True)
            pipe.set(session_key(refresh_token), payload, ex=ttl)
            pipe.sadd(user_sessions_key(user_id), refresh_token)
            pipe.expire(user_sessions_key(user_id), self._index_ttl(ttl))
            pipe.execute()

        return SessionRecord(
            refresh_token=refresh_token,
            user_id=user_id,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=ttl),
        )

    def get(self, refresh_token: str) -> SessionRecord | None:
        """None when absent, expired, or reporting a non-positive remaining TTL."""
        if not refresh_token:
            return None

        with redis_guard("session get"):
            pipe = self.client.pipeline(transaction=True)
            pipe.get(session_key(refresh_token))
            pipe.ttl(session_key(refresh_token))
            raw, ttl = pipe.execute()

        # ttl: -2 missing, -1 no expiry (never written by us), 0 about to expire
        if raw is None or ttl is None or int(ttl) <= 0:
            return None
        return self._decode(refresh_token, raw, int(ttl))

    def delete(self, refresh_token: str) -> bool:
        """
        Remove one session. Returns True only for the caller whose DEL actually
        removed the key, which is what makes concurrent rotation single-winner.
        """
        if not refresh_token:
            return False

        key = session_key(refresh_token)
        with redis_guard("session delete"):
            pipe = self.client.pipeline(transaction=True)
            pipe.get(key)
            pipe.delete(key)
            raw, deleted = pipe.execute()
            deleted = int(deleted or 0)
            if raw is not None and deleted:
                record = self._decode(refresh_token, raw, self.default_ttl_seconds)
                if record is not None:
                    self.client.srem(user_sessions_key(record.user_id), refresh_token)

        return deleted > 0

    def refresh(self, refresh_token: str, new_ttl_seconds: int) -> SessionRecord | None:
        """Extend the TTL in place (same key). None when the session is already gone."""
        ttl = int(new_ttl_seconds)
        if ttl <= 0:
            raise ValueError("new_ttl_seconds must be positive")
        if not refresh_token:
            return None

        key = session_key(refresh_token)
        with redis_guard("session refresh"):
            if not self.client.expire(key, ttl):
                return None
            raw = self.client.get(key)

        if raw is None:
            return None
        record = self._decode(refresh_token, raw, ttl)
        if record is None:
            return None

        with redis_guard("session refresh"):
            self.client.expire(user_sessions_key(record.user_id), self._index_ttl(ttl))
        return record

    # -------------------------
    # Per user
    # -------------------------
    def get_all_for_user(self, user_id: str) -> list[str]:
        """Live refresh tokens for the user; index entries whose session expired are pruned."""
        return sorted(record.refresh_token for record in self.list_for_user(user_id))

    def list_for_user(self, user_id: str) -> list[SessionRecord]:
        index_key = user_sessions_key(user_id)
        with redis_guard("session list"):
            tokens = sorted(self.client.smembers(index_key) or [])
            if not tokens:
                return []

            pipe = self.client.pipeline(transaction=False)
            for token in tokens:
                pipe.get(session_key(token))
                pipe.ttl(session_key(token))
            results = pipe.execute()

        records: list[SessionRecord] = []
        stale: list[str] = []
        for i, token in enumerate(tokens):
            raw, ttl = results[2 * i], results[2 * i + 1]
            record = None
            if raw is not None and ttl is not None and int(ttl) > 0:
                record = self._decode(token, raw, int(ttl))
            if record is None or record.user_id != user_id:
                stale.append(token)
                continue
            records.append(record)

        if stale:
            with redis_guard("session prune"):
                self.client.srem(index_key, *stale)

        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def delete_all_for_user(self, user_id: str) -> int:
        """
        Delete every session of the user. Returns how many session keys were removed.

        Only the tokens read from the index are removed from it; a session
        created meanwhile stays indexed and is reached by the next revoke-all.
        """
        index_key = user_sessions_key(user_id)
        deleted = 0
        with redis_guard("session revoke-all"):
            tokens = sorted(self.client.smembers(index_key) or [])
            if tokens:
                pipe = self.client.pipeline(transaction=True)
                pipe.delete(*[session_key(t) for t in tokens])
                pipe.srem(index_key, *tokens)
                deleted, _ = pipe.execute()
                deleted = int(deleted or 0)

        logger.info("Revoked %s session(s) for user id=%s", deleted, user_id)
        return deleted

    # -------------------------
    # Administrative
    # -------------------------
    def delete_all(self) -> int:
        """
        Wipe every session. Only allowed when ENV=test; anywhere else this
        raises before touching Redis.
        """
        if not settings.is_test:
            raise RuntimeError(f"Refusing to delete all sessions outside the test environment (ENV={settings.ENV})")

        deleted = 0
        with redis_guard("session delete-all"):
            for pattern in (f"{SESSION_KEY_PREFIX}*", f"{USER_SESSIONS_KEY_PREFIX}*"):
                batch: list[str] = []
                for key in self.client.scan_iter(match=pattern, count=_SCAN_BATCH):
                    batch.append(key)
                    if len(batch) >= _SCAN_BATCH:
                        removed = int(self.client.delete(*batch) or 0)
                        if pattern.startswith(SESSION_KEY_PREFIX):
                            deleted += removed
                        batch = []
                if batch:
                    removed = int(self.client.delete(*batch) or 0)
                    if pattern.startswith(SESSION_KEY_PREFIX):
                        deleted += removed

        logger.warning("Deleted all sessions (%s)", deleted)
        return deleted
