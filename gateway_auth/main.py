"""
Gateway authorization server.
OAuth 2.0 authorization code + PKCE flow with refresh rotation; credentials are checked
against the external identity store. Protected routes accept the issued bearer tokens.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from gateway_auth.authorize import router as authorize_router
from gateway_auth.bearer import get_auth_info
from gateway_auth.config import HOST, IDENTITY_URL, LOG_FORMAT, LOG_LEVEL, PORT, require_signing_secret
from gateway_auth.database import init_db
from gateway_auth.domain import AuthInfo
from gateway_auth.provider import get_provider
from gateway_auth.registration import router as registration_router
from gateway_auth.revoke import router as revoke_router
from gateway_auth.seed import seed_client_from_env
from gateway_auth.token_endpoint import router as token_router
from gateway_auth.well_known import router as well_known_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Check the signing secret, create tables and seed the static client on startup."""
    configure_logging()
    # Raises ConfigurationError (startup aborts) when MCP_AUTH_SECRET is unset
    require_signing_secret()
    init_db()
    provider = get_provider()
    seed_client_from_env(provider.clients)
    if not IDENTITY_URL:
        logger.warning("NEXTCLOUD_URL is not set; logins will fail until it is configured")
    logger.info("Authorization server ready (registration enabled=%s)", provider.clients.allows_registration)
    yield


app = FastAPI(title="Gateway Auth", version="1.0.0", lifespan=lifespan)
app.include_router(authorize_router, tags=["authorize"])
app.include_router(token_router, tags=["token"])
app.include_router(revoke_router, tags=["revoke"])
app.include_router(registration_router, tags=["register"])
app.include_router(well_known_router, tags=["well-known"])


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "gateway_auth"}


@app.get("/me")
def me(info: AuthInfo = Depends(get_auth_info)):
    """Bearer-protected. Returns the verified identity the tool-dispatch layer would receive."""
    return {
        "sub": info.subject,
        "client_id": info.client_id,
        "scopes": list(info.scopes),
        "expires_at": info.expires_at,
    }


def run() -> None:
    import uvicorn
    uvicorn.run(
        "gateway_auth.main:app",
        host=HOST,
        port=PORT,
    )


if __name__ == "__main__":
    run()
