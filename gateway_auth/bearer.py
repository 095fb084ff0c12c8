"""
Bearer token verification for protected routes.
Rejections are 401 invalid_token with a fixed description; the cause is only logged.
"""
import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gateway_auth.audit import EVENT_BEARER_REJECTED, OUTCOME_FAIL, get_client_ip, log_audit
from gateway_auth.domain import AuthInfo
from gateway_auth.errors import InvalidToken
from gateway_auth.provider import OAuthProvider, get_provider

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _unauthenticated() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "invalid_token", "error_description": "Invalid or missing access token"},
        headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
    )


def get_auth_info(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    provider: Annotated[OAuthProvider, Depends(get_provider)],
) -> AuthInfo:
    """Dependency: valid Bearer token -> AuthInfo (subject, client_id, scopes, expires_at)."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        log_audit(EVENT_BEARER_REJECTED, ip=get_client_ip(request), outcome=OUTCOME_FAIL, reason="no bearer credentials")
        raise _unauthenticated()
    try:
        return provider.verify_access_token(credentials.credentials)
    except InvalidToken as e:
        log_audit(EVENT_BEARER_REJECTED, ip=get_client_ip(request), outcome=OUTCOME_FAIL, reason=str(e))
        raise _unauthenticated()


def require_scope(required: str):
    """Dependency factory: require the given scope in the access token."""

    def _check(info: Annotated[AuthInfo, Depends(get_auth_info)]) -> AuthInfo:
        if required not in info.scopes:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "insufficient_scope",
                    "error_description": f"Scope '{required}' required",
                },
                headers={"WWW-Authenticate": f'Bearer error="insufficient_scope", scope="{required}"'},
            )
        return info

    return Depends(_check)
