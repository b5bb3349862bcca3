# portal/routes/oauth.py
from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import RedirectResponse

from portal.core.config import settings
from portal.core.cookies import set_auth_cookies
from portal.core.errors import (
    AccountSuspendedError,
    ConflictError,
    NotFoundError,
    ServiceError,
    ServiceUnavailableError,
)
from portal.dependencies.auth import AuthContext, require_auth
from portal.dependencies.rate_limit import require_rate_limit
from portal.dependencies.services import get_auth_service, get_oauth_linker, get_oauth_state_store
from portal.schemas.oauth import OAuthAccountOut
from portal.services.auth import AuthService
from portal.services.oauth import OAuthLinker
from portal.services.oauth_providers import (
    OAuthProviderError,
    UnknownProviderError,
    build_authorization_url,
    get_provider,
)
from portal.services.oauth_state import INTENT_LINK, INTENT_LOGIN, OAuthStateStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/oauth", tags=["oauth"])


def _frontend_redirect(path: str, params: dict[str, str]) -> RedirectResponse:
    url = f"{settings.FRONTEND_BASE_URL}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


def _error_redirect(code: str, message: str | None = None) -> RedirectResponse:
    params = {"error": code}
    if message:
        params["message"] = message
    return _frontend_redirect(settings.OAUTH_ERROR_PATH, params)


def _require_known_provider(provider: str) -> str:
    try:
        return get_provider(provider).name
    except UnknownProviderError as exc:
        raise NotFoundError("Unknown OAuth provider") from exc


@router.get("/accounts", response_model=list[OAuthAccountOut])
def list_accounts(
    ctx: AuthContext = Depends(require_auth),
    linker: OAuthLinker = Depends(get_oauth_linker),
):
    return linker.list_accounts(ctx.user_id)


@router.get("/{provider}")
def start(provider: str, states: OAuthStateStore = Depends(get_oauth_state_store)):
    name = _require_known_provider(provider)
    state = states.issue(name, INTENT_LOGIN)
    return RedirectResponse(build_authorization_url(name, state), status_code=status.HTTP_302_FOUND)


@router.get("/{provider}/link")
def start_link(
    provider: str,
    ctx: AuthContext = Depends(require_auth),
    states: OAuthStateStore = Depends(get_oauth_state_store),
):
    name = _require_known_provider(provider)
    state = states.issue(name, INTENT_LINK, user_id=ctx.user_id)
    return RedirectResponse(build_authorization_url(name, state), status_code=status.HTTP_302_FOUND)


@router.get(
    "/{provider}/callback",
    dependencies=[Depends(require_rate_limit("oauth_callback", limit=settings.RATE_LIMIT_OAUTH_PER_MINUTE))],
)
def callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    states: OAuthStateStore = Depends(get_oauth_state_store),
    linker: OAuthLinker = Depends(get_oauth_linker),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Always answers with a redirect to the frontend. Cookies are only set on
    the success redirect; every failure carries ?error=<code> instead.
    """
    provider = provider.strip().lower()

    if error:
        logger.info("OAuth provider %s returned error=%s", provider, error)
        return _error_redirect("access_denied" if error == "access_denied" else "oauth_failed")
    if not code or not state:
        return _error_redirect("invalid_request")

    try:
        saved = states.consume(state)
        if saved is None or saved.provider != provider:
            logger.info("OAuth callback for %s with unknown or mismatched state", provider)
            return _error_redirect("invalid_state")

        if saved.intent == INTENT_LINK:
            linker.link_account(saved.user_id or "", provider, code)
            return _frontend_redirect(settings.OAUTH_SUCCESS_PATH, {"linked": provider})

        user = linker.handle_callback(provider, code)
        tokens = auth.start_session(user)
    except AccountSuspendedError as exc:
        return _error_redirect("account_suspended", exc.message)
    except ConflictError as exc:
        return _error_redirect("account_conflict", exc.message)
    except ServiceUnavailableError:
        return _error_redirect("temporarily_unavailable")
    except OAuthProviderError as exc:
        logger.info("OAuth exchange with %s failed: %s", provider, exc)
        return _error_redirect("oauth_failed")
    except ServiceError as exc:
        logger.info("OAuth callback for %s rejected: %s", provider, exc.error_code)
        return _error_redirect("oauth_failed")

    response = _frontend_redirect(settings.OAUTH_SUCCESS_PATH, {"success": "true"})
    set_auth_cookies(response, tokens.access_token, tokens.refresh_token)
    return response


@router.delete("/{provider}", status_code=status.HTTP_204_NO_CONTENT)
def unlink(
    provider: str,
    ctx: AuthContext = Depends(require_auth),
    linker: OAuthLinker = Depends(get_oauth_linker),
):
    linker.unlink_account(ctx.user_id, provider)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
