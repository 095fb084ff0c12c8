"""
Access token codec: HS256 JWTs signed with the process-wide secret.
Tokens are self-contained; verification needs no store lookup.
"""
import logging
import time
from typing import Any

import jwt
from jwt.utils import base64url_decode, base64url_encode

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def sign_token(claims: dict[str, Any], secret: str, ttl_seconds: int) -> str:
    """Return a signed JWT carrying claims plus iat and exp = iat + ttl_seconds."""
    now = int(time.time())
    payload = {**claims, "iat": now, "exp": now + ttl_seconds}
    return jwt.encode(payload, secret, algorithm=ALGORITHM, headers={"typ": "JWT"})


def _signature_is_canonical(token: str) -> bool:
    """
    Base64url leaves spare bits in the last character of a segment, so two
    different strings can decode to the same signature bytes. Only the
    canonical encoding is accepted; any edited character then fails.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return False
    sig = parts[2]
    try:
        return base64url_encode(base64url_decode(sig)).decode("ascii") == sig
    except (ValueError, UnicodeError):
        return False


def verify_token(token: str, secret: str) -> dict[str, Any] | None:
    """
    Return the claims if the signature matches and exp has not passed, else None.
    Malformed tokens return None; nothing is raised.
    """
    if not isinstance(token, str) or not _signature_is_canonical(token):
        return None
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"require": ["exp", "iat", "sub"], "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Access token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug("Access token rejected: %s", e)
        return None
