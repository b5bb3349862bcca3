# portal/services/oauth_state.py
from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass

from redis import Redis

from portal.core.config import settings
from portal.core.redis import redis_guard

logger = logging.getLogger(__name__)

OAUTH_STATE_KEY_PREFIX = "oauth_state:"

INTENT_LOGIN = "login"
INTENT_LINK = "link"


@dataclass(frozen=True)
class OAuthState:
    provider: str
    intent: str
    user_id: str | None = None


class OAuthStateStore:
    """Single-use CSRF state for the authorization-code redirect round trip."""

    def __init__(self, client: Redis, *, ttl_seconds: int | None = None) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds or settings.OAUTH_STATE_TTL_SECONDS

    def issue(self, provider: str, intent: str = INTENT_LOGIN, user_id: str | None = None) -> str:
        if intent not in {INTENT_LOGIN, INTENT_LINK}:
            raise ValueError(f"Unknown OAuth intent: {intent}")
        if intent == INTENT_LINK and not user_id:
            raise ValueError("Linking requires a user id")

        state = secrets.token_urlsafe(32)
        payload = json.dumps({"provider": provider, "intent": intent, "user_id": user_id})
        with redis_guard("oauth state issue"):
            self.client.set(f"{OAUTH_STATE_KEY_PREFIX}{state}", payload, ex=self.ttl_seconds)
        return state

    def consume(self, state: str) -> OAuthState | None:
        """Read and delete in one MULTI so a state value can only be redeemed once."""
        if not state:
            return None

        key = f"{OAUTH_STATE_KEY_PREFIX}{state}"
        with redis_guard("oauth state consume"):
            pipe = self.client.pipeline(transaction=True)
            pipe.get(key)
            pipe.delete(key)
            raw, deleted = pipe.execute()

        if raw is None or not deleted:
            return None
        try:
            data = json.loads(raw)
            return OAuthState(provider=data["provider"], intent=data["intent"], user_id=data.get("user_id"))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable OAuth state")
            return None
