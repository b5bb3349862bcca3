# portal/services/oauth_providers.py
"""
Outbound calls to external identity providers (authorization-code flow).

The linker only depends on `exchange_code(provider, code) -> OAuthExchange`;
everything provider-specific (URLs, scopes, profile field names) lives here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from portal.core.config import settings
from portal.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

GITHUB_EMAILS_URL = "https://api.github.com/user/emails"


@dataclass(frozen=True)
class OAuthProviderConfig:
    name: str
    auth_url: str
    token_url: str
    userinfo_url: str
    scope: str


@dataclass(frozen=True)
class OAuthProfile:
    provider_account_id: str
    email: str | None
    email_verified: bool
    name: str | None


@dataclass(frozen=True)
class OAuthTokenSet:
    access_token: str
    refresh_token: str | None = None
    id_token: str | None = None
    token_type: str | None = None
    scope: str | None = None
    expires_in: int | None = None


@dataclass(frozen=True)
class OAuthExchange:
    profile: OAuthProfile
    tokens: OAuthTokenSet


class OAuthProviderError(Exception):
    """The provider rejected the code or returned something unusable."""


class UnknownProviderError(OAuthProviderError):
    """Provider name is not supported or has no client credentials configured."""


PROVIDERS: dict[str, OAuthProviderConfig] = {
    "google": OAuthProviderConfig(
        name="google",
        auth_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://www.googleapis.com/oauth2/v2/userinfo",
        scope="openid email profile",
    ),
    "github": OAuthProviderConfig(
        name="github",
        auth_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        userinfo_url="https://api.github.com/user",
        scope="read:user user:email",
    ),
}


def _client_credentials(provider: str) -> tuple[str, str]:
    if provider == "google":
        return settings.GOOGLE_CLIENT_ID, settings.GOOGLE_CLIENT_SECRET
    if provider == "github":
        return settings.GITHUB_CLIENT_ID, settings.GITHUB_CLIENT_SECRET
    return "", ""


def get_provider(name: str) -> OAuthProviderConfig:
    """
    Raises:
        UnknownProviderError: unsupported name, or client id/secret not configured.
    """
    config = PROVIDERS.get((name or "").strip().lower())
    if config is None:
        raise UnknownProviderError(f"Unsupported OAuth provider: {name}")
    client_id, client_secret = _client_credentials(config.name)
    if not client_id or not client_secret:
        raise UnknownProviderError(f"OAuth provider not configured: {config.name}")
    return config


def redirect_uri(provider: str) -> str:
    return f"{settings.PUBLIC_BASE_URL}/auth/oauth/{provider}/callback"


def build_authorization_url(provider: str, state: str) -> str:
    config = get_provider(provider)
    client_id, _ = _client_credentials(config.name)
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri(config.name),
        "response_type": "code",
        "scope": config.scope,
        "state": state,
    }
    if config.name == "google":
        params["access_type"] = "offline"
        params["prompt"] = "select_account"
    return f"{config.auth_url}?{urlencode(params)}"


def _json(response: httpx.Response, what: str) -> Any:
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise OAuthProviderError(f"{what} failed with status {exc.response.status_code}") from exc
    try:
        return response.json()
    except ValueError as exc:
        raise OAuthProviderError(f"{what} returned invalid JSON") from exc


def _exchange_tokens(config: OAuthProviderConfig, code: str) -> OAuthTokenSet:
    client_id, client_secret = _client_credentials(config.name)
    data = {
        "client_id": client_id,
        "client_secret": client_secret,
        "code": code,
        "redirect_uri": redirect_uri(config.name),
        "grant_type": "authorization_code",
    }
    response = httpx.post(
        config.token_url,
        data=data,
        headers={"Accept": "application/json"},
        timeout=settings.OAUTH_HTTP_TIMEOUT_SECONDS,
    )
    payload = _json(response, "Token exchange")

    # GitHub reports a bad code as 200 + {"error": ...}
    if not isinstance(payload, dict) or payload.get("error") or not payload.get("access_token"):
        raise OAuthProviderError("Token exchange returned no access token")

    expires_in = payload.get("expires_in")
    return OAuthTokenSet(
        access_token=str(payload["access_token"]),
        refresh_token=payload.get("refresh_token"),
        id_token=payload.get("id_token"),
        token_type=payload.get("token_type"),
        scope=payload.get("scope") or config.scope,
        expires_in=int(expires_in) if expires_in else None,
    )


def _google_profile(userinfo: dict[str, Any]) -> OAuthProfile:
    return OAuthProfile(
        provider_account_id=str(userinfo.get("id") or ""),
        email=userinfo.get("email"),
        email_verified=bool(userinfo.get("verified_email")),
        name=userinfo.get("name"),
    )


def _github_profile(userinfo: dict[str, Any], access_token: str) -> OAuthProfile:
    email = userinfo.get("email")
    verified = False

    # /user only exposes the public email, without a verification flag.
    response = httpx.get(
        GITHUB_EMAILS_URL,
        headers={"Authorization": f"Bearer {access_token}", "Accept": "application/vnd.github+json"},
        timeout=settings.OAUTH_HTTP_TIMEOUT_SECONDS,
    )
    if response.status_code == 200:
        try:
            emails = response.json()
        except ValueError:
            emails = []
        if not isinstance(emails, list):
            emails = []
        primary = next(
            (e for e in emails if isinstance(e, dict) and e.get("primary") and e.get("verified")),
            None,
        )
        if primary:
            email = primary.get("email")
            verified = True

    return OAuthProfile(
        provider_account_id=str(userinfo.get("id") or ""),
        email=email,
        email_verified=verified,
        name=userinfo.get("name") or userinfo.get("login"),
    )


def exchange_code(provider: str, code: str) -> OAuthExchange:
    """
    Trade an authorization code for provider tokens and the account profile.

    Raises:
        UnknownProviderError: provider unsupported or unconfigured.
        OAuthProviderError: code rejected, or the profile lacks an id or email.
        ServiceUnavailableError: the provider timed out or could not be reached.
    """
    config = get_provider(provider)
    if not code or not code.strip():
        raise OAuthProviderError("Missing authorization code")

    try:
        tokens = _exchange_tokens(config, code.strip())

        headers = {"Authorization": f"Bearer {tokens.access_token}"}
        if config.name == "github":
            headers["Accept"] = "application/vnd.github+json"
        userinfo = _json(
            httpx.get(config.userinfo_url, headers=headers, timeout=settings.OAUTH_HTTP_TIMEOUT_SECONDS),
            "Profile lookup",
        )
        if not isinstance(userinfo, dict):
            raise OAuthProviderError("Profile lookup returned an unexpected payload")

        if config.name == "google":
            profile = _google_profile(userinfo)
        else:
            profile = _github_profile(userinfo, tokens.access_token)
    except httpx.TimeoutException as exc:
        logger.error("OAuth provider %s timed out", config.name)
        raise ServiceUnavailableError("Identity provider unavailable") from exc
    except httpx.TransportError as exc:
        logger.error("OAuth provider %s unreachable: %s", config.name, exc.__class__.__name__)
        raise ServiceUnavailableError("Identity provider unavailable") from exc

    if not profile.provider_account_id:
        raise OAuthProviderError("Profile has no account id")
    if not profile.email:
        raise OAuthProviderError("Profile has no email address")

    logger.info("OAuth code exchanged provider=%s account=%s", config.name, profile.provider_account_id)
    return OAuthExchange(profile=profile, tokens=tokens)
