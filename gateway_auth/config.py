"""
Gateway authorization server configuration.
Values come from the environment; no secrets in this file.
"""
import os

from gateway_auth.errors import ConfigurationError

# Issuer URL (public identifier, also the base for discovery metadata)
ISSUER = os.environ.get("MCP_AUTH_ISSUER", "http://127.0.0.1:3339").rstrip("/")

# HS256 signing secret for access tokens. Required; checked at startup.
SIGNING_SECRET = os.environ.get("MCP_AUTH_SECRET", "")

# Dynamic client registration (POST /register) is opt-in
REGISTRATION_ENABLED = os.environ.get("MCP_REGISTRATION_ENABLED", "false").strip().lower() == "true"

# Optional pre-seeded static client (e.g. a desktop client configured by hand)
SEED_CLIENT_ID = os.environ.get("MCP_CLIENT_ID", "").strip() or None
SEED_CLIENT_SECRET = os.environ.get("MCP_CLIENT_SECRET", "") or None
SEED_CLIENT_REDIRECT_URIS = [
    u.strip() for u in os.environ.get("MCP_CLIENT_REDIRECT_URIS", "").split(",") if u.strip()
]

# Lifetime of secrets handed out by dynamic registration. 0 = never expires.
CLIENT_SECRET_TTL_SECONDS = int(os.environ.get("MCP_CLIENT_SECRET_TTL", str(30 * 24 * 3600)))

# Grant lifetimes (seconds)
CODE_TTL_SECONDS = 5 * 60
REFRESH_TOKEN_TTL_SECONDS = 24 * 60 * 60
ACCESS_TOKEN_TTL_SECONDS = 60 * 60

# External identity store (Nextcloud OCS) used to check login credentials
IDENTITY_URL = os.environ.get("NEXTCLOUD_URL", "").rstrip("/")
IDENTITY_TIMEOUT_SECONDS = float(os.environ.get("MCP_IDENTITY_TIMEOUT", "10"))

# SQLAlchemy URL for the client registry (and grant stores when backend is "database")
DATABASE_URL = os.environ.get("MCP_AUTH_DATABASE_URL", "sqlite:///./gateway_auth.db")

# Where codes and refresh tokens live: "memory" (process-local) or "database"
GRANT_STORE_BACKEND = os.environ.get("MCP_AUTH_GRANT_STORE", "memory").strip().lower()

# Rate limiting: per-IP, per minute. 0 disables.
RATE_LIMIT_LOGIN_PER_MINUTE = int(os.environ.get("MCP_RATE_LIMIT_LOGIN_PER_MINUTE", "20"))
RATE_LIMIT_TOKEN_PER_MINUTE = int(os.environ.get("MCP_RATE_LIMIT_TOKEN_PER_MINUTE", "60"))

# Bind address for the gateway-auth entry point
HOST = os.environ.get("MCP_AUTH_HOST", "0.0.0.0")
PORT = int(os.environ.get("MCP_AUTH_PORT", "3339"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.environ.get("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def require_signing_secret() -> str:
    """Return the signing secret or raise ConfigurationError if it is not set."""
    if not SIGNING_SECRET:
        raise ConfigurationError("MCP_AUTH_SECRET must be set")
    return SIGNING_SECRET
