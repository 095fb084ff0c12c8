"""
Client secret hashing and the optional static client seeded from environment.
Set MCP_CLIENT_ID + MCP_CLIENT_SECRET (+ MCP_CLIENT_REDIRECT_URIS) to pre-register one client.
"""
import logging
import time

import bcrypt

from gateway_auth import config
from gateway_auth.domain import NEVER, Client

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    # Bcrypt has a 72-byte limit
    raw = password.encode("utf-8")
    if len(raw) > 72:
        raw = raw[:72]
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    raw = plain.encode("utf-8")
    if len(raw) > 72:
        raw = raw[:72]
    try:
        return bcrypt.checkpw(raw, hashed.encode("utf-8"))
    except ValueError:
        # Stored hash is not a bcrypt hash
        return False


def seed_client_from_env(registry) -> Client | None:
    """Register the static client from env if both id and secret are set. Its secret never expires."""
    if not (config.SEED_CLIENT_ID and config.SEED_CLIENT_SECRET):
        return None
    client = Client(
        client_id=config.SEED_CLIENT_ID,
        redirect_uris=tuple(config.SEED_CLIENT_REDIRECT_URIS),
        token_endpoint_auth_method="client_secret_post",
        client_name="Pre-seeded client",
        client_secret_hash=hash_password(config.SEED_CLIENT_SECRET),
        issued_at=int(time.time()),
        secret_expires_at=NEVER,
    )
    return registry.add_client(client)
