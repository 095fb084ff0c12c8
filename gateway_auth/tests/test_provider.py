"""Tests for the provider core: code exchange, refresh rotation, verification, revocation."""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from gateway_auth import config
from gateway_auth.errors import ConfigurationError, InvalidGrant, InvalidScope, InvalidToken
from gateway_auth.pkce import generate_pkce, verify_pkce
from gateway_auth.provider import OAuthProvider, build_provider
from gateway_auth.store import MemoryGrantStore, SqlAuthorizationCodeStore
from gateway_auth.tokens import sign_token

from .conftest import REDIRECT_URI, TEST_SECRET


def _issue(provider, client_id="C1", scopes=("files.read", "calendar.read"), challenge="challenge"):
    return provider.issue_auth_code(
        pkce_challenge=challenge,
        client_id=client_id,
        scopes=scopes,
        redirect_uri=REDIRECT_URI,
        subject="alice",
        state="s1",
    )


def test_exchange_code_returns_token_pair(provider, public_client):
    code = _issue(provider)
    tokens = provider.exchange_authorization_code(public_client, code, REDIRECT_URI)
    assert tokens["token_type"] == "bearer"
    assert tokens["expires_in"] == 3600
    assert tokens["refresh_token"]
    assert tokens["scope"] == "files.read calendar.read"

    info = provider.verify_access_token(tokens["access_token"])
    assert info.subject == "alice"
    assert info.client_id == "C1"
    assert info.scopes == ("files.read", "calendar.read")


def test_code_can_only_be_exchanged_once(provider, public_client):
    code = _issue(provider)
    provider.exchange_authorization_code(public_client, code)
    with pytest.raises(InvalidGrant) as exc_info:
        provider.exchange_authorization_code(public_client, code)
    assert exc_info.value.error == "invalid_grant"
    assert exc_info.value.description == "Invalid authorization grant"


def test_code_expires_after_five_minutes(provider, public_client, clock):
    code = _issue(provider)
    clock.advance(301)
    with pytest.raises(InvalidGrant):
        provider.challenge_for_authorization_code(public_client, code)
    with pytest.raises(InvalidGrant):
        provider.exchange_authorization_code(public_client, code)


def test_challenge_lookup_returns_bound_challenge(provider, public_client):
    verifier, challenge = generate_pkce()
    code = _issue(provider, challenge=challenge)
    bound = provider.challenge_for_authorization_code(public_client, code)
    assert verify_pkce(verifier, bound)
    # Lookup does not consume the code
    provider.exchange_authorization_code(public_client, code)


def test_redirect_uri_mismatch_rejected_and_code_survives(provider, public_client):
    code = _issue(provider)
    with pytest.raises(InvalidGrant):
        provider.exchange_authorization_code(public_client, code, "https://evil")
    assert provider.exchange_authorization_code(public_client, code, REDIRECT_URI)["access_token"]


def test_code_bound_to_issuing_client(provider, public_client, confidential_client):
    code = _issue(provider, client_id="C1")
    with pytest.raises(InvalidGrant):
        provider.challenge_for_authorization_code(confidential_client, code)
    with pytest.raises(InvalidGrant):
        provider.exchange_authorization_code(confidential_client, code)


def test_refresh_rotates_token(provider, public_client):
    first = provider.exchange_authorization_code(public_client, _issue(provider))
    second = provider.exchange_refresh_token(public_client, first["refresh_token"])
    assert second["refresh_token"] != first["refresh_token"]
    assert second["access_token"]
    assert second["scope"] == first["scope"]
    with pytest.raises(InvalidGrant):
        provider.exchange_refresh_token(public_client, first["refresh_token"])
    assert provider.exchange_refresh_token(public_client, second["refresh_token"])["access_token"]


def test_refresh_token_bound_to_client(provider, public_client, confidential_client):
    tokens = provider.exchange_authorization_code(public_client, _issue(provider))
    with pytest.raises(InvalidGrant):
        provider.exchange_refresh_token(confidential_client, tokens["refresh_token"])
    # Still usable by its owner
    provider.exchange_refresh_token(public_client, tokens["refresh_token"])


def test_refresh_token_expires_after_a_day(provider, public_client, clock):
    tokens = provider.exchange_authorization_code(public_client, _issue(provider))
    clock.advance(24 * 3600 + 1)
    with pytest.raises(InvalidGrant):
        provider.exchange_refresh_token(public_client, tokens["refresh_token"])


def test_refresh_may_narrow_scopes(provider, public_client):
    tokens = provider.exchange_authorization_code(public_client, _issue(provider))
    narrowed = provider.exchange_refresh_token(public_client, tokens["refresh_token"], ("files.read",))
    assert narrowed["scope"] == "files.read"
    assert provider.verify_access_token(narrowed["access_token"]).scopes == ("files.read",)
    # Narrowed set carries over to the rotated refresh token
    with pytest.raises(InvalidScope):
        provider.exchange_refresh_token(public_client, narrowed["refresh_token"], ("calendar.read",))


def test_refresh_scope_escalation_rejected_without_consuming(provider, public_client):
    tokens = provider.exchange_authorization_code(public_client, _issue(provider, scopes=("files.read",)))
    with pytest.raises(InvalidScope) as exc_info:
        provider.exchange_refresh_token(public_client, tokens["refresh_token"], ("files.read", "admin"))
    assert exc_info.value.error == "invalid_scope"
    assert provider.exchange_refresh_token(public_client, tokens["refresh_token"])["access_token"]


def test_verify_access_token_rejects_garbage_and_foreign_tokens(provider):
    with pytest.raises(InvalidToken):
        provider.verify_access_token("not-a-token")
    foreign = sign_token({"sub": "alice"}, "some-other-secret-of-adequate-length-xyz", 3600)
    with pytest.raises(InvalidToken):
        provider.verify_access_token(foreign)
    expired = sign_token({"sub": "alice"}, TEST_SECRET, -1)
    with pytest.raises(InvalidToken):
        provider.verify_access_token(expired)


def test_verify_access_token_rejects_malformed_scopes(provider):
    token = sign_token({"sub": "alice", "scopes": "files.read"}, TEST_SECRET, 3600)
    with pytest.raises(InvalidToken):
        provider.verify_access_token(token)


def test_revoke_refresh_token(provider, public_client, confidential_client):
    tokens = provider.exchange_authorization_code(public_client, _issue(provider))
    assert not provider.revoke_token(confidential_client, tokens["refresh_token"])
    assert provider.revoke_token(public_client, tokens["refresh_token"])
    assert not provider.revoke_token(public_client, tokens["refresh_token"])
    with pytest.raises(InvalidGrant):
        provider.exchange_refresh_token(public_client, tokens["refresh_token"])


def test_concurrent_exchange_has_exactly_one_winner(provider, public_client):
    code = _issue(provider)
    workers = 8
    barrier = threading.Barrier(workers)

    def attempt(_):
        barrier.wait()
        try:
            return provider.exchange_authorization_code(public_client, code)
        except InvalidGrant:
            return None

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(attempt, range(workers)))
    assert sum(r is not None for r in results) == 1


def test_build_provider_requires_secret(monkeypatch):
    monkeypatch.setattr(config, "SIGNING_SECRET", "")
    with pytest.raises(ConfigurationError):
        build_provider()


def test_build_provider_selects_backend(monkeypatch):
    monkeypatch.setattr(config, "GRANT_STORE_BACKEND", "memory")
    assert isinstance(build_provider().codes, MemoryGrantStore)
    monkeypatch.setattr(config, "GRANT_STORE_BACKEND", "database")
    assert isinstance(build_provider().codes, SqlAuthorizationCodeStore)
    monkeypatch.setattr(config, "GRANT_STORE_BACKEND", "redis")
    with pytest.raises(ConfigurationError):
        build_provider()


def test_custom_access_token_ttl(registry, public_client):
    short = OAuthProvider(
        registry,
        MemoryGrantStore(300),
        MemoryGrantStore(86400),
        TEST_SECRET,
        access_token_ttl=60,
    )
    code = _issue(short)
    assert short.exchange_authorization_code(public_client, code)["expires_in"] == 60
