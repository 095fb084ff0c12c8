"""
Error taxonomy for the authorization server.
OAuth errors carry an internal reason for logs; only the error code and a
generic description reach the caller.
"""


class ConfigurationError(RuntimeError):
    """Required configuration is missing. Fatal at startup."""


class OAuthError(Exception):
    error = "server_error"
    description = "The request could not be processed"

    def __init__(self, reason: str = ""):
        super().__init__(reason or self.description)
        self.reason = reason or self.description


class InvalidGrant(OAuthError):
    """Code or refresh token absent, expired, consumed, or bound to another client/redirect URI."""

    error = "invalid_grant"
    description = "Invalid authorization grant"


class InvalidScope(OAuthError):
    error = "invalid_scope"
    description = "Requested scope exceeds the original grant"


class InvalidToken(Exception):
    """Bearer token is malformed, tampered with, or expired."""


class AuthenticationFailure(Exception):
    """The identity store rejected the submitted credentials."""


class IdentityServiceError(Exception):
    """The identity store could not be reached or answered unexpectedly."""


class RegistrationDisabled(Exception):
    """Dynamic client registration was not enabled."""
