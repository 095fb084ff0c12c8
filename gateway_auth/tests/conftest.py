"""
Pytest configuration for gateway_auth. Environment is set before the app is imported:
in-memory SQLite, a test signing secret, rate limits off (tests that need them install their own).
"""
import os
import time

os.environ["MCP_AUTH_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["MCP_AUTH_SECRET"] = "test-signing-secret-0123456789abcdef-0123456789"
os.environ["MCP_AUTH_ISSUER"] = "https://gateway.test"
os.environ["MCP_RATE_LIMIT_LOGIN_PER_MINUTE"] = "0"
os.environ["MCP_RATE_LIMIT_TOKEN_PER_MINUTE"] = "0"
for _name in ("NEXTCLOUD_URL", "MCP_CLIENT_ID", "MCP_CLIENT_SECRET", "MCP_CLIENT_REDIRECT_URIS"):
    os.environ.pop(_name, None)

import pytest
from fastapi.testclient import TestClient

from gateway_auth.clients import ClientRegistry
from gateway_auth.config import CODE_TTL_SECONDS, REFRESH_TOKEN_TTL_SECONDS
from gateway_auth.database import SessionLocal, engine
from gateway_auth.domain import Client
from gateway_auth.errors import AuthenticationFailure
from gateway_auth.identity import get_identity_verifier
from gateway_auth.main import app
from gateway_auth.models import Base
from gateway_auth.provider import OAuthProvider, get_provider
from gateway_auth.seed import hash_password
from gateway_auth.store import MemoryGrantStore

TEST_SECRET = os.environ["MCP_AUTH_SECRET"]
REDIRECT_URI = "https://cb"


class FakeClock:
    def __init__(self, now: float | None = None):
        self.now = time.time() if now is None else now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdentityVerifier:
    """Accepts a fixed username/password table; records who tried."""

    def __init__(self, users: dict[str, str]):
        self.users = users
        self.attempts: list[str] = []

    def verify(self, username: str, password: str) -> str:
        self.attempts.append(username)
        if self.users.get(username) != password:
            raise AuthenticationFailure("bad credentials")
        return username


@pytest.fixture
def db_tables():
    """Fresh tables per test (in-memory DB is shared through StaticPool)."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(db_tables, clock):
    return ClientRegistry(SessionLocal, allow_registration=True, secret_ttl_seconds=3600, clock=clock)


@pytest.fixture
def provider(registry, clock):
    return OAuthProvider(
        registry,
        MemoryGrantStore(CODE_TTL_SECONDS, clock=clock),
        MemoryGrantStore(REFRESH_TOKEN_TTL_SECONDS, clock=clock),
        TEST_SECRET,
    )


@pytest.fixture
def identity():
    return FakeIdentityVerifier({"alice": "wonderland", "bob": "builder"})


@pytest.fixture
def client(provider, identity):
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_identity_verifier] = lambda: identity
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def public_client(registry) -> Client:
    """Public client C1 (PKCE only, no secret) with one redirect URI."""
    return registry.add_client(
        Client(
            client_id="C1",
            redirect_uris=(REDIRECT_URI,),
            token_endpoint_auth_method="none",
            client_name="Test App",
        )
    )


@pytest.fixture
def confidential_client(registry) -> Client:
    return registry.add_client(
        Client(
            client_id="conf-client",
            redirect_uris=(REDIRECT_URI, "http://127.0.0.1:8000/callback"),
            token_endpoint_auth_method="client_secret_post",
            client_name="Confidential App",
            client_secret_hash=hash_password("conf-secret"),
        )
    )
