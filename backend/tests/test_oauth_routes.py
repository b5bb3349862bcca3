from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from portal.core.config import settings
from portal.dependencies.services import get_oauth_linker
from portal.models.oauth_account import OAuthAccount
from portal.services.oauth import OAuthLinker
from portal.services.oauth_providers import OAuthExchange, OAuthProfile, OAuthTokenSet, OAuthProviderError
from portal.services.oauth_state import OAuthStateStore


@pytest.fixture(autouse=True)
def _configure_providers():
    settings.GOOGLE_CLIENT_ID = "google-id"
    settings.GOOGLE_CLIENT_SECRET = "google-secret"
    settings.GITHUB_CLIENT_ID = ""
    settings.GITHUB_CLIENT_SECRET = ""


@pytest.fixture()
def profiles():
    return {}


@pytest.fixture()
def oauth_app(app, db_session, profiles):
    def exchange(provider: str, code: str) -> OAuthExchange:
        if code not in profiles:
            raise OAuthProviderError("bad code")
        return OAuthExchange(profile=profiles[code], tokens=OAuthTokenSet(access_token="provider-token"))

    app.dependency_overrides[get_oauth_linker] = lambda: OAuthLinker(db_session, exchange=exchange)
    return app


def _query(res) -> dict[str, list[str]]:
    return parse_qs(urlparse(res.headers["location"]).query)


def _state(fake_redis, intent: str = "login", user_id: str | None = None) -> str:
    return OAuthStateStore(fake_redis).issue("google", intent, user_id=user_id)


def test_start_redirects_to_provider_and_stores_state(client, fake_redis):
    res = client.get("/auth/oauth/google", follow_redirects=False)

    assert res.status_code == 302
    location = urlparse(res.headers["location"])
    assert location.netloc == "accounts.google.com"
    state = parse_qs(location.query)["state"][0]
    assert fake_redis.keys_matching("oauth_state:*") == [f"oauth_state:{state}"]


def test_start_unknown_or_unconfigured_provider_is_404(client):
    assert client.get("/auth/oauth/myspace", follow_redirects=False).status_code == 404
    assert client.get("/auth/oauth/github", follow_redirects=False).status_code == 404


def test_callback_creates_student_and_sets_cookies(oauth_app, client, fake_redis, profiles, db_session):
    profiles["good"] = OAuthProfile(
        provider_account_id="g-1", email="newkid@example.com", email_verified=True, name="New Kid"
    )
    state = _state(fake_redis)

    res = client.get(f"/auth/oauth/google/callback?code=good&state={state}", follow_redirects=False)

    assert res.status_code == 302
    assert res.headers["location"].startswith(f"{settings.FRONTEND_BASE_URL}{settings.OAUTH_SUCCESS_PATH}")
    assert _query(res) == {"success": ["true"]}
    assert client.cookies.get(settings.ACCESS_COOKIE_NAME)
    assert client.cookies.get(settings.REFRESH_COOKIE_NAME)
    assert db_session.query(OAuthAccount).count() == 1

    me = client.get("/auth/me")
    assert me.json()["email"] == "newkid@example.com"
    assert me.json()["role"] == "student"


def test_callback_state_is_single_use(oauth_app, client, fake_redis, profiles):
    profiles["good"] = OAuthProfile(provider_account_id="g-1", email="kid@example.com", email_verified=True, name=None)
    state = _state(fake_redis)

    client.get(f"/auth/oauth/google/callback?code=good&state={state}", follow_redirects=False)
    client.cookies.clear()
    replay = client.get(f"/auth/oauth/google/callback?code=good&state={state}", follow_redirects=False)

    assert _query(replay) == {"error": ["invalid_state"]}
    assert not client.cookies.get(settings.ACCESS_COOKIE_NAME)


def test_callback_with_unknown_state_sets_no_cookies(oauth_app, client, profiles):
    profiles["good"] = OAuthProfile(provider_account_id="g-1", email="kid@example.com", email_verified=True, name=None)

    res = client.get("/auth/oauth/google/callback?code=good&state=forged", follow_redirects=False)

    assert res.status_code == 302
    assert res.headers["location"].startswith(f"{settings.FRONTEND_BASE_URL}{settings.OAUTH_ERROR_PATH}")
    assert _query(res) == {"error": ["invalid_state"]}
    assert "set-cookie" not in {k.lower() for k in res.headers.keys()}


def test_callback_without_code_is_invalid_request(oauth_app, client):
    res = client.get("/auth/oauth/google/callback?state=abc", follow_redirects=False)
    assert _query(res) == {"error": ["invalid_request"]}


def test_callback_provider_denial_is_reported(oauth_app, client):
    res = client.get("/auth/oauth/google/callback?error=access_denied&state=abc", follow_redirects=False)
    assert _query(res) == {"error": ["access_denied"]}


def test_callback_with_rejected_code_is_oauth_failed(oauth_app, client, fake_redis):
    state = _state(fake_redis)
    res = client.get(f"/auth/oauth/google/callback?code=expired&state={state}", follow_redirects=False)
    assert _query(res) == {"error": ["oauth_failed"]}


def test_callback_for_suspended_user_is_refused(oauth_app, client, fake_redis, profiles, users, db_session):
    users["student"].suspended = True
    db_session.commit()
    profiles["good"] = OAuthProfile(
        provider_account_id="g-5", email="student@example.com", email_verified=True, name=None
    )
    state = _state(fake_redis)

    res = client.get(f"/auth/oauth/google/callback?code=good&state={state}", follow_redirects=False)

    query = _query(res)
    assert query["error"] == ["account_suspended"]
    assert query["message"]
    assert "set-cookie" not in {k.lower() for k in res.headers.keys()}
    assert fake_redis.keys_matching("session:*") == []


def test_callback_unverified_email_collision_is_conflict(oauth_app, client, fake_redis, profiles, users):
    profiles["good"] = OAuthProfile(
        provider_account_id="g-5", email="teacher@example.com", email_verified=False, name=None
    )
    state = _state(fake_redis)

    res = client.get(f"/auth/oauth/google/callback?code=good&state={state}", follow_redirects=False)

    assert _query(res)["error"] == ["account_conflict"]


def test_callback_during_store_outage_is_temporarily_unavailable(oauth_app, client, fake_redis):
    state = _state(fake_redis)
    fake_redis.unavailable = True

    res = client.get(f"/auth/oauth/google/callback?code=good&state={state}", follow_redirects=False)

    assert _query(res) == {"error": ["temporarily_unavailable"]}


def test_link_flow_attaches_identity_to_signed_in_user(oauth_app, client, fake_redis, profiles, users, login_as):
    login_as("teacher@example.com")

    start = client.get("/auth/oauth/google/link", follow_redirects=False)
    assert start.status_code == 302
    state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]

    profiles["good"] = OAuthProfile(provider_account_id="g-77", email="elsewhere@example.com", email_verified=True, name=None)
    res = client.get(f"/auth/oauth/google/callback?code=good&state={state}", follow_redirects=False)
    assert _query(res) == {"linked": ["google"]}

    accounts = client.get("/auth/oauth/accounts")
    assert accounts.status_code == 200
    assert [a["provider"] for a in accounts.json()] == ["google"]

    unlink = client.delete("/auth/oauth/google")
    assert unlink.status_code == 204
    assert client.get("/auth/oauth/accounts").json() == []


def test_link_start_requires_authentication(client):
    client.cookies.clear()
    assert client.get("/auth/oauth/google/link", follow_redirects=False).status_code == 401


def test_unlink_unknown_link_is_404(oauth_app, client, users, login_as):
    login_as("teacher@example.com")
    res = client.delete("/auth/oauth/google")
    assert res.status_code == 404
    assert res.json()["error"] == "NOT_FOUND"
