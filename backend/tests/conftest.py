import os

# Settings are read at import time: pin the test environment before importing portal.*.
os.environ["ENV"] = "test"
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import fnmatch
import time
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient
from redis import exceptions as redis_exceptions
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal.core.base import Base
from portal.core import config as app_config
from portal.core.security import hash_password

# Import models so they register with SQLAlchemy metadata.
from portal.models.user import User
from portal.models.oauth_account import OAuthAccount  # noqa: F401

from portal.core.database import get_db
from portal.core.redis import get_redis
from portal.services.auth import AuthService
from portal.services.sessions import SessionStore

PASSWORD = "Correct-Horse1!"


# -------------------------
# Fake Redis
# -------------------------
class FakePipeline:
    """Queues commands and runs them in order on execute(), like a MULTI/EXEC block."""

    def __init__(self, client: "FakeRedis"):
        self.client = client
        self._calls: list = []

    def __getattr__(self, name):
        method = getattr(self.client, name)

        def queue(*args, **kwargs):
            self._calls.append((method, args, kwargs))
            return self

        return queue

    def execute(self):
        calls, self._calls = self._calls, []
        return [method(*args, **kwargs) for method, args, kwargs in calls]


class FakeRedis:
    """
    In-memory stand-in for the redis-py client (decode_responses=True).

    Supports the commands the portal uses. `advance()` moves the clock used for
    TTLs; `unavailable = True` makes every command raise ConnectionError.
    """

    def __init__(self):
        self._data: dict[str, object] = {}
        self._expiry: dict[str, float] = {}
        self._offset = 0.0
        self.unavailable = False

    # helpers -----------------------------------------------------------
    def _now(self) -> float:
        return time.time() + self._offset

    def advance(self, seconds: float) -> None:
        self._offset += seconds

    def _check(self) -> None:
        if self.unavailable:
            raise redis_exceptions.ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def _alive(self, key: str) -> bool:
        exp = self._expiry.get(key)
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            self._expiry.pop(key, None)
        return key in self._data

    def keys_matching(self, pattern: str) -> list[str]:
        return sorted(k for k in list(self._data) if self._alive(k) and fnmatch.fnmatchcase(k, pattern))

    # strings -----------------------------------------------------------
    def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and self._alive(key):
            return None
        self._data[key] = str(value)
        if ex is not None:
            self._expiry[key] = self._now() + int(ex)
        else:
            self._expiry.pop(key, None)
        return True

    def get(self, key):
        self._check()
        if not self._alive(key):
            return None
        value = self._data[key]
        return value if isinstance(value, str) else None

    def incr(self, key):
        self._check()
        current = int(self._data[key]) if self._alive(key) else 0
        self._data[key] = str(current + 1)
        return current + 1

    # keys --------------------------------------------------------------
    def ttl(self, key):
        self._check()
        if not self._alive(key):
            return -2
        exp = self._expiry.get(key)
        if exp is None:
            return -1
        return max(0, int(round(exp - self._now())))

    def expire(self, key, seconds):
        self._check()
        if not self._alive(key):
            return False
        self._expiry[key] = self._now() + int(seconds)
        return True

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self._data.pop(key, None)
            self._expiry.pop(key, None)
        return removed

    def exists(self, *keys):
        self._check()
        return sum(1 for key in keys if self._alive(key))

    def scan_iter(self, match=None, count=None):  # noqa: ARG002
        self._check()
        for key in self.keys_matching(match or "*"):
            yield key

    # sets --------------------------------------------------------------
    def sadd(self, key, *members):
        self._check()
        current = self._data.get(key) if self._alive(key) else None
        if not isinstance(current, set):
            current = set()
            self._data[key] = current
        before = len(current)
        current.update(members)
        return len(current) - before

    def srem(self, key, *members):
        self._check()
        current = self._data.get(key) if self._alive(key) else None
        if not isinstance(current, set):
            return 0
        removed = len(current & set(members))
        current.difference_update(members)
        if not current:
            self._data.pop(key, None)
            self._expiry.pop(key, None)
        return removed

    def smembers(self, key):
        self._check()
        current = self._data.get(key) if self._alive(key) else None
        return set(current) if isinstance(current, set) else set()

    # misc --------------------------------------------------------------
    def pipeline(self, transaction=True):  # noqa: ARG002
        return FakePipeline(self)

    def close(self):
        return None


# -------------------------
# Fixtures
# -------------------------
@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # The in-memory DB persists across tests (StaticPool): reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def session_store(fake_redis):
    return SessionStore(fake_redis)


@pytest.fixture()
def auth_service(db_session, session_store):
    return AuthService(db_session, session_store)


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests sometimes tweak global settings (app_config.settings.*). Because that object is
    process-global, restore values after each test to avoid cross-test coupling.
    """
    keys = [
        "ENV",
        "ENABLE_RATE_LIMITING",
        "ACCESS_TOKEN_EXPIRE_MINUTES",
        "PASSWORD_MIN_LENGTH",
        "GOOGLE_CLIENT_ID",
        "GOOGLE_CLIENT_SECRET",
        "GITHUB_CLIENT_ID",
        "GITHUB_CLIENT_SECRET",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)


@pytest.fixture(scope="session")
def password_hash():
    # Hashing is deliberately slow (100k PBKDF2 rounds); compute the shared fixture hash once.
    return hash_password(PASSWORD)


@pytest.fixture()
def password():
    return PASSWORD


@pytest.fixture()
def users(db_session, password_hash):
    """
    One active user per role, all with PASSWORD.
    """
    created = {}
    for role in ("admin", "teacher", "student"):
        user = User(
            email=f"{role}@example.com",
            name=f"{role.title()} User",
            password_hash=password_hash,
            role=role,
            suspended=False,
        )
        db_session.add(user)
        created[role] = user
    db_session.commit()
    for user in created.values():
        db_session.refresh(user)
    return created


@pytest.fixture()
def app(db_session, fake_redis):
    app_config.settings.ENABLE_RATE_LIMITING = False

    import portal.main as main

    fastapi_app = main.app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_redis] = lambda: fake_redis
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def login_as(client):
    """
    Log `client` in with the fixture password; returns the login response.

    Usage:
        login_as("teacher@example.com")
    """

    def _login(email: str, password: str = PASSWORD):
        res = client.post("/auth/login", json={"email": email, "password": password})
        assert res.status_code == 200, res.text
        return res

    return _login


@pytest.fixture()
def client_for(app):
    """
    Context manager for an extra, independently cookied client (a second device/user).

    Usage:
        with client_for("student@example.com") as c:
            ...
    """

    @contextmanager
    def _client_for(email: str, password: str = PASSWORD):
        with TestClient(app) as c:
            res = c.post("/auth/login", json={"email": email, "password": password})
            assert res.status_code == 200, res.text
            yield c

    return _client_for
