"""
Token revocation endpoint (POST /revoke). RFC 7009.
Only refresh tokens are revocable; access tokens are stateless JWTs and simply expire.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request

from gateway_auth.audit import EVENT_TOKEN_REVOKED, OUTCOME_SUCCESS, get_client_ip, log_audit
from gateway_auth.client_auth import require_client_auth
from gateway_auth.provider import OAuthProvider, get_provider

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/revoke")
def revoke(
    request: Request,
    provider: Annotated[OAuthProvider, Depends(get_provider)],
    token: str = Form(...),
    token_type_hint: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
):
    """
    Revoke a refresh token held by the authenticated client. RFC 7009: answer 200
    whether or not the token was known, so token existence is not leaked.
    """
    if not token.strip():
        raise HTTPException(status_code=400, detail={"error": "invalid_request", "error_description": "token is required"})

    client = require_client_auth(provider.clients, request, client_id, client_secret)

    hint = (token_type_hint or "").strip().lower()
    if hint in ("", "refresh_token") and provider.revoke_token(client, token.strip()):
        log_audit(EVENT_TOKEN_REVOKED, client_id=client.client_id, ip=get_client_ip(request), outcome=OUTCOME_SUCCESS)
    return {}
