"""
Token endpoint (POST /token): authorization_code and refresh_token grants.
Errors are generic; the provider logs the precise reason.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import JSONResponse

from gateway_auth.audit import (
    EVENT_TOKEN_DENIED,
    EVENT_TOKEN_ISSUED,
    EVENT_TOKEN_REFRESHED,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    get_client_ip,
    log_audit,
)
from gateway_auth.client_auth import require_client_auth
from gateway_auth.domain import Client, parse_scope
from gateway_auth.errors import OAuthError
from gateway_auth.pkce import PkceVerifier, get_pkce_verifier
from gateway_auth.provider import OAuthProvider, get_provider
from gateway_auth.rate_limit import token_limiter

logger = logging.getLogger(__name__)
router = APIRouter()

SUPPORTED_GRANTS = ("authorization_code", "refresh_token")
NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _error(status_code: int, error: str, description: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "error_description": description},
        headers=NO_STORE,
    )


def _oauth_failure(request: Request, client: Client, exc: OAuthError) -> HTTPException:
    log_audit(
        EVENT_TOKEN_DENIED,
        client_id=client.client_id,
        ip=get_client_ip(request),
        outcome=OUTCOME_FAIL,
        reason=exc.reason,
    )
    return _error(400, exc.error, exc.description)


@router.post("/token")
def token(
    request: Request,
    provider: Annotated[OAuthProvider, Depends(get_provider)],
    pkce_check: Annotated[PkceVerifier, Depends(get_pkce_verifier)],
    grant_type: str = Form(...),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    code_verifier: str | None = Form(None),
    refresh_token: str | None = Form(None),
    scope: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
):
    """
    authorization_code: exchange code (+ PKCE verifier) for access_token and refresh_token.
    refresh_token: exchange refresh_token for a new pair; the presented token is rotated out.
    """
    allowed, retry_after = token_limiter.check_and_consume(get_client_ip(request))
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail={"error": "too_many_requests", "error_description": "Rate limit exceeded"},
            headers={"Retry-After": str(retry_after)},
        )

    client = require_client_auth(provider.clients, request, client_id, client_secret)

    if grant_type not in SUPPORTED_GRANTS:
        raise _error(
            400,
            "unsupported_grant_type",
            "Only authorization_code and refresh_token are supported",
        )
    if grant_type not in client.grant_types:
        raise _error(400, "unauthorized_client", "Client is not allowed to use this grant type")

    if grant_type == "authorization_code":
        tokens = _token_authorization_code(
            request, provider, pkce_check, client, code=code, code_verifier=code_verifier, redirect_uri=redirect_uri
        )
    else:
        tokens = _token_refresh_token(request, provider, client, refresh_token=refresh_token, scope=scope)
    return JSONResponse(tokens, headers=NO_STORE)


def _token_authorization_code(
    request: Request,
    provider: OAuthProvider,
    pkce_check: PkceVerifier,
    client: Client,
    *,
    code: str | None,
    code_verifier: str | None,
    redirect_uri: str | None,
) -> dict:
    if not code or not code_verifier:
        raise _error(400, "invalid_request", "code and code_verifier are required for authorization_code grant")

    try:
        challenge = provider.challenge_for_authorization_code(client, code)
        if not pkce_check(code_verifier, challenge):
            log_audit(
                EVENT_TOKEN_DENIED,
                client_id=client.client_id,
                ip=get_client_ip(request),
                outcome=OUTCOME_FAIL,
                reason="PKCE verification failed",
            )
            raise _error(400, "invalid_grant", "Invalid authorization grant")
        tokens = provider.exchange_authorization_code(client, code, redirect_uri or None)
    except OAuthError as e:
        raise _oauth_failure(request, client, e)

    log_audit(EVENT_TOKEN_ISSUED, client_id=client.client_id, ip=get_client_ip(request), outcome=OUTCOME_SUCCESS)
    return tokens


def _token_refresh_token(
    request: Request,
    provider: OAuthProvider,
    client: Client,
    *,
    refresh_token: str | None,
    scope: str | None,
) -> dict:
    if not refresh_token:
        raise _error(400, "invalid_request", "refresh_token is required")

    try:
        tokens = provider.exchange_refresh_token(client, refresh_token, parse_scope(scope) or None)
    except OAuthError as e:
        raise _oauth_failure(request, client, e)

    log_audit(EVENT_TOKEN_REFRESHED, client_id=client.client_id, ip=get_client_ip(request), outcome=OUTCOME_SUCCESS)
    return tokens
