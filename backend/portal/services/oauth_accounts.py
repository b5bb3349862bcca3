# portal/services/oauth_accounts.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from portal.models.oauth_account import OAuthAccount
from portal.services.oauth_providers import OAuthTokenSet


def _expires_at(tokens: OAuthTokenSet) -> datetime | None:
    if not tokens.expires_in:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=tokens.expires_in)


def find_by_provider(db: Session, provider: str, provider_account_id: str) -> Optional[OAuthAccount]:
    return (
        db.query(OAuthAccount)
        .filter(
            OAuthAccount.provider == provider,
            OAuthAccount.provider_account_id == provider_account_id,
        )
        .first()
    )


def find_for_user(db: Session, user_id: str, provider: str) -> Optional[OAuthAccount]:
    return (
        db.query(OAuthAccount)
        .filter(OAuthAccount.user_id == user_id, OAuthAccount.provider == provider)
        .first()
    )


def list_for_user(db: Session, user_id: str) -> list[OAuthAccount]:
    return (
        db.query(OAuthAccount)
        .filter(OAuthAccount.user_id == user_id)
        .order_by(OAuthAccount.provider.asc())
        .all()
    )


def create(
    db: Session,
    *,
    user_id: str,
    provider: str,
    provider_account_id: str,
    tokens: OAuthTokenSet,
) -> OAuthAccount:
    """Stage a new link; the caller commits (and handles the unique-constraint race)."""
    account = OAuthAccount(
        user_id=user_id,
        provider=provider,
        provider_account_id=provider_account_id,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        id_token=tokens.id_token,
        token_type=tokens.token_type,
        scope=tokens.scope,
        expires_at=_expires_at(tokens),
    )
    db.add(account)
    return account


def update_tokens(db: Session, account: OAuthAccount, tokens: OAuthTokenSet) -> OAuthAccount:
    """Replace stored provider credentials; keeps the old refresh token if the provider sent none."""
    account.access_token = tokens.access_token
    if tokens.refresh_token:
        account.refresh_token = tokens.refresh_token
    if tokens.id_token:
        account.id_token = tokens.id_token
    account.token_type = tokens.token_type
    account.scope = tokens.scope or account.scope
    account.expires_at = _expires_at(tokens)
    return account


def delete(db: Session, account: OAuthAccount) -> None:
    db.delete(account)
