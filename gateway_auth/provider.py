"""
OAuth provider core: code issuance, code and refresh-token exchange,
access-token verification and revocation.

Store lookups return None; this module turns absence into InvalidGrant /
InvalidToken and logs the precise reason. Callers only ever see the generic
error code.
"""
import logging
from typing import Any, NoReturn

from gateway_auth import config
from gateway_auth.clients import ClientRegistry
from gateway_auth.database import SessionLocal
from gateway_auth.domain import AuthInfo, AuthorizationCode, Client, RefreshToken
from gateway_auth.errors import ConfigurationError, InvalidGrant, InvalidScope, InvalidToken
from gateway_auth.store import (
    GrantStore,
    MemoryGrantStore,
    SqlAuthorizationCodeStore,
    SqlRefreshTokenStore,
)
from gateway_auth.tokens import sign_token, verify_token

logger = logging.getLogger(__name__)

TOKEN_TYPE = "bearer"


class OAuthProvider:
    def __init__(
        self,
        clients: ClientRegistry,
        codes: GrantStore[AuthorizationCode],
        refresh_tokens: GrantStore[RefreshToken],
        secret: str,
        *,
        access_token_ttl: int = config.ACCESS_TOKEN_TTL_SECONDS,
    ):
        self.clients = clients
        self.codes = codes
        self.refresh_tokens = refresh_tokens
        self._secret = secret
        self._access_ttl = access_token_ttl

    def issue_auth_code(
        self,
        *,
        pkce_challenge: str,
        client_id: str,
        scopes: tuple[str, ...] | list[str],
        redirect_uri: str,
        subject: str,
        state: str | None = None,
    ) -> str:
        """Called after a successful login. Returns the opaque code."""
        self.codes.purge_expired()
        self.refresh_tokens.purge_expired()
        return self.codes.store(
            AuthorizationCode(
                pkce_challenge=pkce_challenge,
                client_id=client_id,
                scopes=tuple(scopes),
                redirect_uri=redirect_uri,
                subject=subject,
                state=state or None,
            )
        )

    def challenge_for_authorization_code(self, client: Client, code: str) -> str:
        """Return the PKCE challenge bound to a live code issued to this client."""
        entry = self.codes.get(code)
        if entry is None:
            self._deny(client, None, "authorization code unknown or expired")
        if entry.client_id != client.client_id:
            self._deny(client, entry.subject, f"authorization code issued to {entry.client_id}")
        return entry.pkce_challenge

    def exchange_authorization_code(
        self,
        client: Client,
        code: str,
        redirect_uri: str | None = None,
    ) -> dict[str, Any]:
        """
        Redeem a code for an access/refresh token pair. PKCE must already have
        been checked by the caller. The code is consumed only on success.
        """
        entry = self.codes.get(code)
        if entry is None:
            self._deny(client, None, "authorization code unknown or expired")
        if entry.client_id != client.client_id:
            self._deny(client, entry.subject, f"authorization code issued to {entry.client_id}")
        if redirect_uri and entry.redirect_uri != redirect_uri:
            self._deny(client, entry.subject, "redirect_uri mismatch")

        if self.codes.take(code) is None:
            self._deny(client, entry.subject, "authorization code redeemed concurrently")

        tokens = self._issue_pair(entry.subject, client.client_id, entry.scopes)
        logger.info(
            "Access token issued for client_id=%s sub=%s scopes=%s",
            client.client_id,
            entry.subject,
            " ".join(entry.scopes),
        )
        return tokens

    def exchange_refresh_token(
        self,
        client: Client,
        refresh_token: str,
        scopes: tuple[str, ...] | list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Rotate a refresh token. Requested scopes may narrow the grant but never
        widen it; the narrowed set carries over to the new refresh token.
        """
        entry = self.refresh_tokens.get(refresh_token)
        if entry is None:
            self._deny(client, None, "refresh token unknown or expired")
        if entry.client_id != client.client_id:
            self._deny(client, entry.subject, f"refresh token issued to {entry.client_id}")

        effective = tuple(scopes) if scopes else entry.scopes
        escalated = set(effective) - set(entry.scopes)
        if escalated:
            logger.warning(
                "Refresh for client_id=%s sub=%s requested scopes outside grant: %s",
                client.client_id,
                entry.subject,
                " ".join(sorted(escalated)),
            )
            raise InvalidScope(f"scopes not in original grant: {' '.join(sorted(escalated))}")

        if self.refresh_tokens.take(refresh_token) is None:
            self._deny(client, entry.subject, "refresh token redeemed concurrently")

        tokens = self._issue_pair(entry.subject, client.client_id, effective)
        logger.info(
            "refresh_token grant: new tokens issued for client_id=%s sub=%s (refresh token rotated)",
            client.client_id,
            entry.subject,
        )
        return tokens

    def verify_access_token(self, token: str) -> AuthInfo:
        claims = verify_token(token, self._secret)
        if claims is None:
            raise InvalidToken("invalid or expired access token")
        scopes = claims.get("scopes") or []
        if not isinstance(scopes, list):
            raise InvalidToken("malformed scopes claim")
        return AuthInfo(
            token=token,
            subject=str(claims["sub"]),
            client_id=str(claims.get("client_id", "")),
            scopes=tuple(str(s) for s in scopes),
            expires_at=int(claims["exp"]),
        )

    def revoke_token(self, client: Client, token: str) -> bool:
        """Delete a refresh token owned by client. Returns whether anything was revoked."""
        entry = self.refresh_tokens.get(token)
        if entry is None or entry.client_id != client.client_id:
            return False
        self.refresh_tokens.delete(token)
        return True

    def _issue_pair(self, subject: str, client_id: str, scopes: tuple[str, ...]) -> dict[str, Any]:
        access_token = sign_token(
            {"sub": subject, "client_id": client_id, "scopes": list(scopes)},
            self._secret,
            self._access_ttl,
        )
        refresh_token = self.refresh_tokens.store(
            RefreshToken(subject=subject, client_id=client_id, scopes=scopes)
        )
        return {
            "access_token": access_token,
            "token_type": TOKEN_TYPE,
            "expires_in": self._access_ttl,
            "refresh_token": refresh_token,
            "scope": " ".join(scopes),
        }

    def _deny(self, client: Client, subject: str | None, reason: str) -> NoReturn:
        logger.warning(
            "Token exchange denied for client_id=%s sub=%s: %s",
            client.client_id,
            subject or "-",
            reason,
        )
        raise InvalidGrant(reason)


def build_provider() -> OAuthProvider:
    """Wire the provider from config. Raises ConfigurationError if the secret is missing."""
    secret = config.require_signing_secret()
    clients = ClientRegistry(
        SessionLocal,
        allow_registration=config.REGISTRATION_ENABLED,
        secret_ttl_seconds=config.CLIENT_SECRET_TTL_SECONDS,
    )
    if config.GRANT_STORE_BACKEND == "database":
        codes = SqlAuthorizationCodeStore(SessionLocal, config.CODE_TTL_SECONDS)
        refresh = SqlRefreshTokenStore(SessionLocal, config.REFRESH_TOKEN_TTL_SECONDS)
    elif config.GRANT_STORE_BACKEND == "memory":
        codes = MemoryGrantStore(config.CODE_TTL_SECONDS)
        refresh = MemoryGrantStore(config.REFRESH_TOKEN_TTL_SECONDS)
    else:
        raise ConfigurationError(f"Unknown MCP_AUTH_GRANT_STORE: {config.GRANT_STORE_BACKEND!r}")
    return OAuthProvider(clients, codes, refresh, secret)


# Module-level state (set at app startup)
_provider: OAuthProvider | None = None


def get_provider() -> OAuthProvider:
    """Dependency: the process-wide provider, built on first use."""
    global _provider
    if _provider is None:
        _provider = build_provider()
    return _provider
