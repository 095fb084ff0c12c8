"""
Client authentication at the token and revocation endpoints (RFC 6749 §2.3.1).
Accepts client_secret_post (form fields) and client_secret_basic (Authorization header).
Public clients registered with token_endpoint_auth_method=none present only client_id.
"""
import base64
import binascii
import logging
import time
from urllib.parse import unquote

from fastapi import HTTPException, Request

from gateway_auth.audit import EVENT_TOKEN_DENIED, OUTCOME_FAIL, get_client_ip, log_audit
from gateway_auth.clients import ClientRegistry
from gateway_auth.domain import Client
from gateway_auth.seed import verify_password

logger = logging.getLogger(__name__)


def _parse_basic_credentials(header_value: str) -> tuple[str, str] | None:
    """Decode an Authorization: Basic value into (client_id, client_secret), or None if malformed."""
    scheme, _, encoded = (header_value or "").strip().partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, _, client_secret = decoded.partition(":")
    # RFC 6749 §2.3.1: both parts are form-urlencoded before base64
    return unquote(client_id.strip()), unquote(client_secret)


def read_client_credentials(
    request: Request,
    form_client_id: str | None,
    form_client_secret: str | None,
) -> tuple[str | None, str | None]:
    """(client_id, client_secret): a full form pair wins, then the Basic header, then a bare form client_id."""
    if form_client_id and form_client_secret is not None:
        return form_client_id.strip(), form_client_secret
    basic = _parse_basic_credentials(request.headers.get("Authorization", ""))
    if basic:
        return basic
    if form_client_id:
        return form_client_id.strip(), form_client_secret
    return None, None


def _invalid_client(request: Request, client_id: str | None, reason: str) -> HTTPException:
    log_audit(
        EVENT_TOKEN_DENIED,
        client_id=client_id,
        ip=get_client_ip(request),
        outcome=OUTCOME_FAIL,
        reason=reason,
    )
    return HTTPException(
        status_code=401,
        detail={"error": "invalid_client", "error_description": "Client authentication failed"},
    )


def require_client_auth(
    registry: ClientRegistry,
    request: Request,
    form_client_id: str | None,
    form_client_secret: str | None,
) -> Client:
    """
    Resolve and authenticate the client. Raises 401 invalid_client when the client is
    unknown, or confidential and the secret is missing, wrong, or expired.
    """
    client_id, client_secret = read_client_credentials(request, form_client_id, form_client_secret)
    if not client_id:
        raise _invalid_client(request, None, "client_id missing")
    client = registry.get_client(client_id)
    if client is None:
        raise _invalid_client(request, client_id, "unknown client")
    if client.is_confidential:
        if not client_secret or not verify_password(client_secret, client.client_secret_hash):
            raise _invalid_client(request, client_id, "bad client secret")
        if client.secret_expired(time.time()):
            raise _invalid_client(request, client_id, "client secret expired")
    return client
