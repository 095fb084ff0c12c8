"""
Dynamic client registration (POST /register). RFC 7591 subset.
Only served when MCP_REGISTRATION_ENABLED=true.
"""
import logging
from typing import Annotated
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from gateway_auth.audit import EVENT_CLIENT_REGISTERED, OUTCOME_SUCCESS, get_client_ip, log_audit
from gateway_auth.clients import SUPPORTED_AUTH_METHODS
from gateway_auth.domain import DEFAULT_GRANT_TYPES, DEFAULT_RESPONSE_TYPES, NEVER, Client
from gateway_auth.errors import RegistrationDisabled
from gateway_auth.provider import OAuthProvider, get_provider

logger = logging.getLogger(__name__)
router = APIRouter()

SUPPORTED_GRANT_TYPES = set(DEFAULT_GRANT_TYPES)
SUPPORTED_RESPONSE_TYPES = set(DEFAULT_RESPONSE_TYPES)
_LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}


class ClientRegistrationRequest(BaseModel):
    client_name: str | None = None
    redirect_uris: list[str]
    grant_types: list[str] = Field(default_factory=lambda: list(DEFAULT_GRANT_TYPES))
    response_types: list[str] = Field(default_factory=lambda: list(DEFAULT_RESPONSE_TYPES))
    token_endpoint_auth_method: str = "client_secret_post"


def is_valid_redirect_uri(uri: str) -> bool:
    """https anywhere, http only on loopback, or a custom scheme for native apps. No fragments."""
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    if not parts.scheme or parts.fragment:
        return False
    if parts.scheme == "https":
        return bool(parts.netloc)
    if parts.scheme == "http":
        return parts.hostname in _LOOPBACK_HOSTS
    return True


def _invalid_metadata(description: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"error": "invalid_client_metadata", "error_description": description},
    )


def client_to_registration_response(client: Client, plain_secret: str | None) -> dict:
    body = {
        "client_id": client.client_id,
        "client_id_issued_at": client.issued_at,
        "client_name": client.client_name,
        "redirect_uris": list(client.redirect_uris),
        "grant_types": list(client.grant_types),
        "response_types": list(client.response_types),
        "token_endpoint_auth_method": client.token_endpoint_auth_method,
    }
    if plain_secret is not None:
        body["client_secret"] = plain_secret
        # RFC 7591: 0 on the wire means the secret does not expire
        body["client_secret_expires_at"] = 0 if client.secret_expires_at is NEVER else client.secret_expires_at
    return body


@router.post("/register", status_code=201)
def register(
    request: Request,
    metadata: ClientRegistrationRequest,
    provider: Annotated[OAuthProvider, Depends(get_provider)],
):
    """Register a client; the secret (if any) is returned once and never again."""
    if not provider.clients.allows_registration:
        raise HTTPException(status_code=404, detail="Not Found")

    if not metadata.redirect_uris:
        raise _invalid_metadata("redirect_uris must not be empty")
    bad = [u for u in metadata.redirect_uris if not is_valid_redirect_uri(u)]
    if bad:
        raise _invalid_metadata(f"Invalid redirect_uri: {bad[0]}")
    if metadata.token_endpoint_auth_method not in SUPPORTED_AUTH_METHODS:
        raise _invalid_metadata("Unsupported token_endpoint_auth_method")
    if not set(metadata.grant_types) <= SUPPORTED_GRANT_TYPES:
        raise _invalid_metadata("Unsupported grant_types")
    if not set(metadata.response_types) <= SUPPORTED_RESPONSE_TYPES:
        raise _invalid_metadata("Unsupported response_types")

    try:
        client, plain_secret = provider.clients.register_client(
            redirect_uris=metadata.redirect_uris,
            grant_types=metadata.grant_types,
            response_types=metadata.response_types,
            token_endpoint_auth_method=metadata.token_endpoint_auth_method,
            client_name=metadata.client_name,
        )
    except RegistrationDisabled:
        raise HTTPException(status_code=404, detail="Not Found")

    log_audit(EVENT_CLIENT_REGISTERED, client_id=client.client_id, ip=get_client_ip(request), outcome=OUTCOME_SUCCESS)
    return JSONResponse(
        client_to_registration_response(client, plain_secret),
        status_code=201,
        headers={"Cache-Control": "no-store"},
    )
