# portal/dependencies/services.py
from __future__ import annotations

from fastapi import Depends
from redis import Redis
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.core.redis import get_redis
from portal.services.auth import AuthService
from portal.services.oauth import OAuthLinker
from portal.services.oauth_state import OAuthStateStore
from portal.services.sessions import SessionStore


def get_session_store(redis: Redis = Depends(get_redis)) -> SessionStore:
    return SessionStore(redis)


def get_auth_service(
    db: Session = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
) -> AuthService:
    return AuthService(db, sessions)


def get_oauth_linker(db: Session = Depends(get_db)) -> OAuthLinker:
    return OAuthLinker(db)


def get_oauth_state_store(redis: Redis = Depends(get_redis)) -> OAuthStateStore:
    return OAuthStateStore(redis)
