"""
External credential check against the Nextcloud OCS user endpoint.
One call per login; the store's answer decides, nothing is cached.
"""
import logging
from typing import Protocol

import httpx

from gateway_auth import config
from gateway_auth.errors import AuthenticationFailure, IdentityServiceError

logger = logging.getLogger(__name__)

OCS_USER_PATH = "/ocs/v2.php/cloud/user"


class IdentityVerifier(Protocol):
    def verify(self, username: str, password: str) -> str:
        """Return the subject id for valid credentials; raise AuthenticationFailure otherwise."""
        ...


class NextcloudIdentityVerifier:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def verify(self, username: str, password: str) -> str:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as http:
                resp = http.get(
                    f"{self._base_url}{OCS_USER_PATH}",
                    auth=(username, password),
                    headers={"OCS-APIRequest": "true", "Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.warning("Identity store request failed: %s", e)
            raise IdentityServiceError(str(e)) from e

        if resp.status_code in (401, 403):
            raise AuthenticationFailure("identity store rejected credentials")
        if resp.status_code != 200:
            logger.warning("Identity store answered HTTP %s", resp.status_code)
            raise IdentityServiceError(f"unexpected status {resp.status_code}")

        # Prefer the canonical user id; login names can differ in case or be an email
        try:
            subject = resp.json()["ocs"]["data"]["id"]
        except (ValueError, KeyError, TypeError):
            subject = None
        return str(subject) if subject else username


_verifier: NextcloudIdentityVerifier | None = None


def get_identity_verifier() -> IdentityVerifier | None:
    """Dependency: the configured identity verifier, or None when NEXTCLOUD_URL is unset."""
    global _verifier
    if _verifier is None:
        if not config.IDENTITY_URL:
            return None
        _verifier = NextcloudIdentityVerifier(config.IDENTITY_URL, timeout=config.IDENTITY_TIMEOUT_SECONDS)
    return _verifier
