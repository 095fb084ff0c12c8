"""
Client registry backed by the clients table.
Static clients are added at startup; dynamic registration (RFC 7591) only when enabled.
"""
import json
import logging
import secrets
import time
import uuid
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from gateway_auth.domain import (
    DEFAULT_GRANT_TYPES,
    DEFAULT_RESPONSE_TYPES,
    NEVER,
    Client,
)
from gateway_auth.errors import RegistrationDisabled
from gateway_auth.models import ClientRow
from gateway_auth.seed import hash_password

logger = logging.getLogger(__name__)

PUBLIC_AUTH_METHOD = "none"
SUPPORTED_AUTH_METHODS = ("client_secret_post", "client_secret_basic", PUBLIC_AUTH_METHOD)


def _row_to_client(row: ClientRow) -> Client:
    return Client(
        client_id=row.client_id,
        redirect_uris=tuple(row.get_redirect_uris_list()),
        grant_types=tuple(row.grant_types.split()),
        response_types=tuple(row.response_types.split()),
        token_endpoint_auth_method=row.token_endpoint_auth_method,
        client_name=row.client_name,
        client_secret_hash=row.client_secret_hash,
        issued_at=row.issued_at,
        secret_expires_at=NEVER if row.secret_expires_at is None else row.secret_expires_at,
    )


def _client_to_row(client: Client) -> ClientRow:
    return ClientRow(
        client_id=client.client_id,
        client_name=client.client_name,
        redirect_uris=json.dumps(list(client.redirect_uris)),
        grant_types=" ".join(client.grant_types),
        response_types=" ".join(client.response_types),
        token_endpoint_auth_method=client.token_endpoint_auth_method,
        client_secret_hash=client.client_secret_hash,
        issued_at=client.issued_at,
        secret_expires_at=None if client.secret_expires_at is NEVER else client.secret_expires_at,
    )


class ClientRegistry:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        allow_registration: bool = False,
        secret_ttl_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ):
        self._session_factory = session_factory
        self._allow_registration = allow_registration
        self._secret_ttl = secret_ttl_seconds
        self._clock = clock

    @property
    def allows_registration(self) -> bool:
        return self._allow_registration

    def get_client(self, client_id: str) -> Client | None:
        if not client_id:
            return None
        db: Session = self._session_factory()
        try:
            row = db.query(ClientRow).filter(ClientRow.client_id == client_id).first()
            return _row_to_client(row) if row else None
        finally:
            db.close()

    def add_client(self, client: Client) -> Client:
        """Insert a pre-built client unless one with the same id exists; return the stored client."""
        db: Session = self._session_factory()
        try:
            existing = db.query(ClientRow).filter(ClientRow.client_id == client.client_id).first()
            if existing is not None:
                logger.debug("Client already exists: %s", client.client_id)
                return _row_to_client(existing)
            db.add(_client_to_row(client))
            db.commit()
            logger.info("Seeded client: %s (confidential=%s)", client.client_id, client.is_confidential)
            return client
        finally:
            db.close()

    def register_client(
        self,
        *,
        redirect_uris: list[str],
        grant_types: list[str] | None = None,
        response_types: list[str] | None = None,
        token_endpoint_auth_method: str = "client_secret_post",
        client_name: str | None = None,
    ) -> tuple[Client, str | None]:
        """
        Create a client with a fresh UUID and issuance time.
        Returns (client, plain_secret); plain_secret is None for public clients
        and is not recoverable afterwards.
        """
        if not self._allow_registration:
            raise RegistrationDisabled("dynamic client registration is disabled")

        issued_at = int(self._clock())
        plain_secret = None
        secret_hash = None
        expires_at = NEVER
        if token_endpoint_auth_method != PUBLIC_AUTH_METHOD:
            plain_secret = secrets.token_urlsafe(32)
            secret_hash = hash_password(plain_secret)
            if self._secret_ttl > 0:
                expires_at = issued_at + self._secret_ttl

        client = Client(
            client_id=str(uuid.uuid4()),
            redirect_uris=tuple(redirect_uris),
            grant_types=tuple(grant_types or DEFAULT_GRANT_TYPES),
            response_types=tuple(response_types or DEFAULT_RESPONSE_TYPES),
            token_endpoint_auth_method=token_endpoint_auth_method,
            client_name=client_name,
            client_secret_hash=secret_hash,
            issued_at=issued_at,
            secret_expires_at=expires_at,
        )
        db: Session = self._session_factory()
        try:
            db.add(_client_to_row(client))
            db.commit()
        finally:
            db.close()
        logger.info(
            "Registered client %s (name=%s, auth_method=%s)",
            client.client_id,
            client_name,
            token_endpoint_auth_method,
        )
        return client, plain_secret
