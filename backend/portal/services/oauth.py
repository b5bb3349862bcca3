# portal/services/oauth.py
"""
OAuth account linking.

handle_callback resolves a provider identity to a local user in this order:
1. existing (provider, provider_account_id) link
2. existing local user with the same email (only if the provider verified it)
3. a brand-new student account without a password

Suspension is checked as soon as the user is resolved, before anything is
written and before the caller can issue tokens.
"""
from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.core.database import database_guard
from portal.core.errors import (
    AccountSuspendedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from portal.core.roles import DEFAULT_ROLE
from portal.models.oauth_account import OAuthAccount
from portal.models.user import User
from portal.services import oauth_accounts
from portal.services.oauth_providers import OAuthExchange, exchange_code
from portal.services.users import create_user, find_user_by_email, find_user_by_id

logger = logging.getLogger(__name__)

ExchangeFn = Callable[[str, str], OAuthExchange]


def _ensure_active(user: User) -> None:
    if user.suspended:
        logger.info("OAuth sign-in refused for suspended user id=%s", user.id)
        raise AccountSuspendedError()


class OAuthLinker:
    def __init__(self, db: Session, exchange: ExchangeFn = exchange_code) -> None:
        self.db = db
        self.exchange = exchange

    def handle_callback(self, provider: str, code: str) -> User:
        provider = (provider or "").strip().lower()
        result = self.exchange(provider, code)

        with database_guard(self.db, "oauth callback"):
            try:
                return self._resolve(provider, result)
            except IntegrityError:
                # Another callback for the same identity or email committed first.
                self.db.rollback()
                logger.info("Concurrent OAuth sign-in for provider=%s; re-resolving", provider)

            try:
                return self._resolve(provider, result)
            except IntegrityError as exc:
                self.db.rollback()
                raise ConflictError("This account could not be linked") from exc

    def _resolve(self, provider: str, result: OAuthExchange) -> User:
        profile = result.profile

        account = oauth_accounts.find_by_provider(self.db, provider, profile.provider_account_id)
        if account is not None:
            user = find_user_by_id(self.db, account.user_id)
            if user is None:
                raise UnauthorizedError()
            _ensure_active(user)
            oauth_accounts.update_tokens(self.db, account, result.tokens)
            self.db.commit()
            return user

        user = find_user_by_email(self.db, profile.email or "")
        if user is not None:
            if not profile.email_verified:
                raise ConflictError(
                    "An account with this email already exists. Sign in and link the provider from your settings."
                )
            _ensure_active(user)
            if oauth_accounts.find_for_user(self.db, user.id, provider) is not None:
                raise ConflictError(f"This account is already linked to a different {provider} identity")
            oauth_accounts.create(
                self.db,
                user_id=user.id,
                provider=provider,
                provider_account_id=profile.provider_account_id,
                tokens=result.tokens,
            )
            self.db.commit()
            logger.info("Linked %s identity to existing user id=%s by verified email", provider, user.id)
            return user

        user = create_user(
            self.db,
            email=profile.email or "",
            name=profile.name,
            password_hash=None,
            role=DEFAULT_ROLE,
            commit=False,
        )
        oauth_accounts.create(
            self.db,
            user_id=user.id,
            provider=provider,
            provider_account_id=profile.provider_account_id,
            tokens=result.tokens,
        )
        self.db.commit()
        self.db.refresh(user)
        logger.info("Created user id=%s from %s sign-in", user.id, provider)
        return user

    def link_account(self, user_id: str, provider: str, code: str) -> OAuthAccount:
        """Attach a provider identity to an already signed-in user."""
        provider = (provider or "").strip().lower()
        result = self.exchange(provider, code)
        profile = result.profile

        with database_guard(self.db, "oauth link"):
            user = find_user_by_id(self.db, user_id)
            if user is None:
                raise UnauthorizedError()
            _ensure_active(user)

            existing = oauth_accounts.find_for_user(self.db, user.id, provider)
            if existing is not None:
                if existing.provider_account_id != profile.provider_account_id:
                    raise ConflictError(f"You already have a {provider} account linked")
                oauth_accounts.update_tokens(self.db, existing, result.tokens)
                self.db.commit()
                return existing

            owner = oauth_accounts.find_by_provider(self.db, provider, profile.provider_account_id)
            if owner is not None:
                raise ConflictError(f"This {provider} account is already linked to another user")

            account = oauth_accounts.create(
                self.db,
                user_id=user.id,
                provider=provider,
                provider_account_id=profile.provider_account_id,
                tokens=result.tokens,
            )
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                raise ConflictError(f"This {provider} account is already linked") from exc

            self.db.refresh(account)
            logger.info("Linked %s identity to user id=%s", provider, user.id)
            return account

    def unlink_account(self, user_id: str, provider: str) -> None:
        provider = (provider or "").strip().lower()
        with database_guard(self.db, "oauth unlink"):
            account = oauth_accounts.find_for_user(self.db, user_id, provider)
            if account is None:
                raise NotFoundError(f"No {provider} account linked")

            user = find_user_by_id(self.db, user_id)
            if user is None:
                raise UnauthorizedError()

            linked = oauth_accounts.list_for_user(self.db, user_id)
            if not user.password_hash and len(linked) <= 1:
                raise InvalidStateError("Cannot unlink your only sign-in method. Set a password first.")

            oauth_accounts.delete(self.db, account)
            self.db.commit()
            logger.info("Unlinked %s identity from user id=%s", provider, user_id)

    def list_accounts(self, user_id: str) -> list[OAuthAccount]:
        with database_guard(self.db, "oauth list"):
            return oauth_accounts.list_for_user(self.db, user_id)
