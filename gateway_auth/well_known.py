"""
Discovery metadata: OAuth authorization server (RFC 8414) and protected resource (RFC 9728).
"""
from typing import Annotated

from fastapi import APIRouter, Depends

from gateway_auth.clients import SUPPORTED_AUTH_METHODS
from gateway_auth.config import ISSUER
from gateway_auth.provider import OAuthProvider, get_provider

router = APIRouter()


@router.get("/.well-known/oauth-authorization-server")
def authorization_server_metadata(provider: Annotated[OAuthProvider, Depends(get_provider)]):
    """Authorization server metadata. registration_endpoint only when registration is enabled."""
    metadata = {
        "issuer": ISSUER,
        "authorization_endpoint": f"{ISSUER}/authorize",
        "token_endpoint": f"{ISSUER}/token",
        "revocation_endpoint": f"{ISSUER}/revoke",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "code_challenge_methods_supported": ["S256"],
        "token_endpoint_auth_methods_supported": list(SUPPORTED_AUTH_METHODS),
        "revocation_endpoint_auth_methods_supported": list(SUPPORTED_AUTH_METHODS),
    }
    if provider.clients.allows_registration:
        metadata["registration_endpoint"] = f"{ISSUER}/register"
    return metadata


@router.get("/.well-known/oauth-protected-resource")
def protected_resource_metadata():
    """Tells clients which authorization server guards this gateway's bearer-protected routes."""
    return {
        "resource": ISSUER,
        "authorization_servers": [ISSUER],
        "bearer_methods_supported": ["header"],
    }
