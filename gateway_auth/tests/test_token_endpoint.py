"""Tests for POST /token: the full authorization code flow, refresh rotation, client auth."""
import base64
import time
from urllib.parse import parse_qs, urlsplit

import pytest

from gateway_auth import token_endpoint
from gateway_auth.domain import Client
from gateway_auth.pkce import generate_pkce
from gateway_auth.rate_limit import SlidingWindowLimiter
from gateway_auth.seed import hash_password

from .conftest import REDIRECT_URI


def _error(r) -> str | None:
    body = r.json()
    return (body.get("detail") or body).get("error")


def _login_code(client, challenge, client_id="C1", scope="files.read calendar.read", redirect_uri=REDIRECT_URI):
    """Run /authorize + /auth/login as alice; return the issued code."""
    r = client.get(
        "/authorize",
        params={
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "state": "xyz",
            "scope": scope,
        },
    )
    assert r.status_code == 200
    r = client.post(
        "/auth/login",
        data={
            "username": "alice",
            "password": "wonderland",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "code_challenge": challenge,
            "state": "xyz",
            "scope": scope,
        },
        follow_redirects=False,
    )
    assert r.status_code == 302
    return parse_qs(urlsplit(r.headers["location"]).query)["code"][0]


def _exchange(client, code, verifier, **extra):
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "code_verifier": verifier,
        "client_id": "C1",
        "redirect_uri": REDIRECT_URI,
    }
    data.update(extra)
    return client.post("/token", data={k: v for k, v in data.items() if v is not None})


def test_full_authorization_code_flow(client, public_client):
    verifier, challenge = generate_pkce()
    code = _login_code(client, challenge)

    r = _exchange(client, code, verifier)
    assert r.status_code == 200
    body = r.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == 3600
    assert body["access_token"]
    assert body["refresh_token"]
    assert body["scope"] == "files.read calendar.read"
    assert r.headers["cache-control"] == "no-store"

    me = client.get("/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["sub"] == "alice"
    assert me.json()["client_id"] == "C1"
    assert me.json()["scopes"] == ["files.read", "calendar.read"]


def test_second_exchange_of_same_code_fails(client, public_client):
    verifier, challenge = generate_pkce()
    code = _login_code(client, challenge)
    assert _exchange(client, code, verifier).status_code == 200

    r = _exchange(client, code, verifier)
    assert r.status_code == 400
    assert _error(r) == "invalid_grant"
    assert "access_token" not in r.json()


def test_wrong_code_verifier_fails_and_leaves_code_usable(client, public_client):
    verifier, challenge = generate_pkce()
    other_verifier, _ = generate_pkce()
    code = _login_code(client, challenge)

    r = _exchange(client, code, other_verifier)
    assert r.status_code == 400
    assert _error(r) == "invalid_grant"
    assert _exchange(client, code, verifier).status_code == 200


def test_unknown_code_fails(client, public_client):
    verifier, _ = generate_pkce()
    r = _exchange(client, "made-up-code", verifier)
    assert r.status_code == 400
    assert _error(r) == "invalid_grant"


def test_redirect_uri_mismatch_fails(client, public_client):
    verifier, challenge = generate_pkce()
    code = _login_code(client, challenge)
    r = _exchange(client, code, verifier, redirect_uri="https://elsewhere")
    assert r.status_code == 400
    assert _error(r) == "invalid_grant"


def test_redirect_uri_may_be_omitted(client, public_client):
    verifier, challenge = generate_pkce()
    code = _login_code(client, challenge)
    assert _exchange(client, code, verifier, redirect_uri=None).status_code == 200


@pytest.mark.parametrize("missing", ["code", "code_verifier"])
def test_missing_code_or_verifier_is_invalid_request(client, public_client, missing):
    fields = {"code": "some-code", "code_verifier": "some-verifier"}
    fields[missing] = None
    r = _exchange(client, fields["code"], fields["code_verifier"])
    assert r.status_code == 400
    assert _error(r) == "invalid_request"


def test_refresh_rotation_and_reuse(client, public_client):
    verifier, challenge = generate_pkce()
    first = _exchange(client, _login_code(client, challenge), verifier).json()

    r = client.post(
        "/token",
        data={"grant_type": "refresh_token", "refresh_token": first["refresh_token"], "client_id": "C1"},
    )
    assert r.status_code == 200
    second = r.json()
    assert second["refresh_token"] != first["refresh_token"]
    assert second["access_token"]

    r = client.post(
        "/token",
        data={"grant_type": "refresh_token", "refresh_token": first["refresh_token"], "client_id": "C1"},
    )
    assert r.status_code == 400
    assert _error(r) == "invalid_grant"


def test_refresh_scope_escalation_is_invalid_scope(client, public_client):
    verifier, challenge = generate_pkce()
    tokens = _exchange(client, _login_code(client, challenge, scope="files.read"), verifier).json()
    r = client.post(
        "/token",
        data={
            "grant_type": "refresh_token",
            "refresh_token": tokens["refresh_token"],
            "client_id": "C1",
            "scope": "files.read files.write",
        },
    )
    assert r.status_code == 400
    assert _error(r) == "invalid_scope"


def test_refresh_requires_token(client, public_client):
    r = client.post("/token", data={"grant_type": "refresh_token", "client_id": "C1"})
    assert r.status_code == 400
    assert _error(r) == "invalid_request"


def test_unsupported_grant_type(client, public_client):
    r = client.post("/token", data={"grant_type": "client_credentials", "client_id": "C1"})
    assert r.status_code == 400
    assert _error(r) == "unsupported_grant_type"


def test_grant_type_not_registered_for_client(client, registry):
    registry.add_client(
        Client(
            client_id="code-only",
            redirect_uris=(REDIRECT_URI,),
            grant_types=("authorization_code",),
            token_endpoint_auth_method="none",
        )
    )
    r = client.post("/token", data={"grant_type": "refresh_token", "refresh_token": "x", "client_id": "code-only"})
    assert r.status_code == 400
    assert _error(r) == "unauthorized_client"


def test_unknown_client_is_invalid_client(client, public_client):
    r = client.post("/token", data={"grant_type": "authorization_code", "client_id": "ghost"})
    assert r.status_code == 401
    assert _error(r) == "invalid_client"


def test_missing_client_id_is_invalid_client(client, public_client):
    r = client.post("/token", data={"grant_type": "authorization_code"})
    assert r.status_code == 401
    assert _error(r) == "invalid_client"


def test_confidential_client_with_secret_in_form(client, confidential_client):
    verifier, challenge = generate_pkce()
    code = _login_code(client, challenge, client_id="conf-client")
    r = _exchange(client, code, verifier, client_id="conf-client", client_secret="conf-secret")
    assert r.status_code == 200


def test_confidential_client_with_basic_auth(client, confidential_client):
    verifier, challenge = generate_pkce()
    code = _login_code(client, challenge, client_id="conf-client")
    basic = base64.b64encode(b"conf-client:conf-secret").decode("ascii")
    r = client.post(
        "/token",
        data={"grant_type": "authorization_code", "code": code, "code_verifier": verifier},
        headers={"Authorization": f"Basic {basic}"},
    )
    assert r.status_code == 200


@pytest.mark.parametrize("secret", [None, "wrong-secret"])
def test_confidential_client_bad_secret(client, confidential_client, secret):
    verifier, challenge = generate_pkce()
    code = _login_code(client, challenge, client_id="conf-client")
    r = _exchange(client, code, verifier, client_id="conf-client", client_secret=secret)
    assert r.status_code == 401
    assert _error(r) == "invalid_client"


def test_expired_client_secret_is_rejected(client, registry):
    registry.add_client(
        Client(
            client_id="stale",
            redirect_uris=(REDIRECT_URI,),
            client_secret_hash=hash_password("stale-secret"),
            issued_at=int(time.time()) - 7200,
            secret_expires_at=int(time.time()) - 3600,
        )
    )
    r = client.post(
        "/token",
        data={"grant_type": "refresh_token", "refresh_token": "x", "client_id": "stale", "client_secret": "stale-secret"},
    )
    assert r.status_code == 401
    assert _error(r) == "invalid_client"


def test_token_rate_limited(client, public_client, monkeypatch):
    monkeypatch.setattr(token_endpoint, "token_limiter", SlidingWindowLimiter(1))
    assert client.post("/token", data={"grant_type": "refresh_token", "client_id": "C1"}).status_code == 400
    r = client.post("/token", data={"grant_type": "refresh_token", "client_id": "C1"})
    assert r.status_code == 429
    assert "retry-after" in r.headers


@pytest.mark.parametrize("stored_challenge", ["café" * 11, "x" * 300])
def test_unmatchable_stored_challenge_is_invalid_grant(client, provider, public_client, stored_challenge):
    code = provider.issue_auth_code(
        pkce_challenge=stored_challenge,
        client_id="C1",
        scopes=("files.read",),
        redirect_uri=REDIRECT_URI,
        subject="alice",
    )
    verifier, _ = generate_pkce()
    r = _exchange(client, code, verifier)
    assert r.status_code == 400
    assert _error(r) == "invalid_grant"
