"""
Core records passed between the registry, the grant stores and the endpoints.
"""
import enum
from dataclasses import dataclass, field


class SecretExpiry(enum.Enum):
    """Marker for a client secret with no expiry. Never compared as a timestamp."""

    NEVER = "never"


NEVER = SecretExpiry.NEVER

DEFAULT_GRANT_TYPES = ("authorization_code", "refresh_token")
DEFAULT_RESPONSE_TYPES = ("code",)


@dataclass(frozen=True)
class Client:
    client_id: str
    redirect_uris: tuple[str, ...]
    grant_types: tuple[str, ...] = DEFAULT_GRANT_TYPES
    response_types: tuple[str, ...] = DEFAULT_RESPONSE_TYPES
    token_endpoint_auth_method: str = "client_secret_post"
    client_name: str | None = None
    client_secret_hash: str | None = None
    issued_at: int = 0
    secret_expires_at: int | SecretExpiry = NEVER

    @property
    def is_confidential(self) -> bool:
        return bool(self.client_secret_hash)

    def redirect_uri_allowed(self, uri: str) -> bool:
        return uri in self.redirect_uris

    def secret_expired(self, now: float) -> bool:
        if self.secret_expires_at is NEVER:
            return False
        return now >= self.secret_expires_at


@dataclass(frozen=True)
class AuthorizationCode:
    pkce_challenge: str
    client_id: str
    scopes: tuple[str, ...]
    redirect_uri: str
    subject: str
    state: str | None = None
    expires_at: float = 0.0


@dataclass(frozen=True)
class RefreshToken:
    subject: str
    client_id: str
    scopes: tuple[str, ...]
    expires_at: float = 0.0


@dataclass(frozen=True)
class AuthInfo:
    """Verified bearer identity handed to protected routes."""

    token: str
    subject: str
    client_id: str
    scopes: tuple[str, ...] = field(default_factory=tuple)
    expires_at: int = 0


def parse_scope(scope: str | None) -> tuple[str, ...]:
    """Split a space-separated scope string, dropping blanks and duplicates (order kept)."""
    if not scope:
        return ()
    seen: dict[str, None] = {}
    for s in scope.split():
        seen.setdefault(s, None)
    return tuple(seen)
