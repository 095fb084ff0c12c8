"""
PKCE (RFC 7636), S256 only.
The check lives at the token endpoint boundary and is injected as a dependency,
so the provider only stores and returns the bound challenge.
"""
import hashlib
import hmac
import re
import secrets
from base64 import urlsafe_b64encode
from typing import Callable

PkceVerifier = Callable[[str, str], bool]

# RFC 7636 section 4.2: 43-128 unreserved characters
_CHALLENGE_RE = re.compile(r"[A-Za-z0-9._~-]{43,128}")


def compute_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(code_verifier: str, code_challenge: str) -> bool:
    """SHA256(verifier) base64url == challenge, compared in constant time."""
    try:
        computed = compute_challenge(code_verifier).encode("ascii")
        expected = code_challenge.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(computed, expected)


def is_valid_challenge(code_challenge: str | None) -> bool:
    return bool(code_challenge) and _CHALLENGE_RE.fullmatch(code_challenge) is not None


def generate_pkce() -> tuple[str, str]:
    """Return (code_verifier, code_challenge). Verifier is 43 chars (256 bits entropy)."""
    code_verifier = secrets.token_urlsafe(32)
    return code_verifier, compute_challenge(code_verifier)


def get_pkce_verifier() -> PkceVerifier:
    """Dependency: the PKCE check used by POST /token."""
    return verify_pkce
