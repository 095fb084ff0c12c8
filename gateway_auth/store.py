"""
Short-lived grant storage: authorization codes and refresh tokens.

Every backend offers the same capability: store(entry) -> key, get(key),
delete(key) and take(key). take is the atomic get-and-remove used for
redemption, so two concurrent exchanges of one code cannot both succeed.
Expiry is enforced lazily on lookup; purge_expired() runs whenever a new code is issued.
"""
import dataclasses
import logging
import secrets
import threading
import time
from datetime import datetime, timezone
from abc import ABC, abstractmethod
from typing import Callable, Generic, Protocol, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from gateway_auth.domain import AuthorizationCode, RefreshToken, parse_scope
from gateway_auth.models import AuthorizationCodeRow, RefreshTokenRow

logger = logging.getLogger(__name__)

E = TypeVar("E", AuthorizationCode, RefreshToken)

Clock = Callable[[], float]


class GrantStore(Protocol[E]):
    def store(self, entry: E) -> str: ...

    def get(self, key: str) -> E | None: ...

    def delete(self, key: str) -> None: ...

    def take(self, key: str) -> E | None: ...

    def purge_expired(self) -> int: ...


def new_grant_key() -> str:
    return secrets.token_urlsafe(32)


class MemoryGrantStore(Generic[E]):
    """Process-local store: a dict guarded by one lock."""

    def __init__(self, ttl_seconds: int, clock: Clock = time.time):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, E] = {}
        self._lock = threading.Lock()

    def store(self, entry: E) -> str:
        key = new_grant_key()
        with self._lock:
            self._entries[key] = dataclasses.replace(entry, expires_at=self._clock() + self._ttl)
        return key

    def get(self, key: str) -> E | None:
        with self._lock:
            return self._live_entry(key, remove=False)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def take(self, key: str) -> E | None:
        with self._lock:
            return self._live_entry(key, remove=True)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now > e.expires_at]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def _live_entry(self, key: str, *, remove: bool) -> E | None:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        if remove:
            del self._entries[key]
        return entry


def _to_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, timezone.utc)


def _to_timestamp(dt: datetime) -> float:
    # SQLite drops tzinfo; stored values are always UTC
    return dt.replace(tzinfo=timezone.utc).timestamp()


class _SqlGrantStore(ABC, Generic[E]):
    """Database-backed store. take() is a compare-and-delete: only the caller
    whose DELETE removed the row gets the entry back."""

    row_model: type
    key_column: str

    def __init__(self, session_factory: sessionmaker, ttl_seconds: int, clock: Clock = time.time):
        self._session_factory = session_factory
        self._ttl = ttl_seconds
        self._clock = clock

    @abstractmethod
    def _to_row(self, key: str, entry: E, expires_at: datetime): ...

    @abstractmethod
    def _from_row(self, row) -> E: ...

    def _key_attr(self):
        return getattr(self.row_model, self.key_column)

    def store(self, entry: E) -> str:
        key = new_grant_key()
        db: Session = self._session_factory()
        try:
            db.add(self._to_row(key, entry, _to_datetime(self._clock() + self._ttl)))
            db.commit()
        finally:
            db.close()
        return key

    def get(self, key: str) -> E | None:
        db: Session = self._session_factory()
        try:
            row = db.execute(select(self.row_model).where(self._key_attr() == key)).scalar_one_or_none()
            if row is None:
                return None
            entry = self._from_row(row)
            if self._clock() > entry.expires_at:
                db.execute(delete(self.row_model).where(self._key_attr() == key))
                db.commit()
                return None
            return entry
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db: Session = self._session_factory()
        try:
            db.execute(delete(self.row_model).where(self._key_attr() == key))
            db.commit()
        finally:
            db.close()

    def take(self, key: str) -> E | None:
        entry = self.get(key)
        if entry is None:
            return None
        db: Session = self._session_factory()
        try:
            result = db.execute(delete(self.row_model).where(self._key_attr() == key))
            db.commit()
            if result.rowcount != 1:
                logger.debug("%s already taken by a concurrent caller", self.row_model.__tablename__)
                return None
            return entry
        finally:
            db.close()

    def purge_expired(self) -> int:
        now = _to_datetime(self._clock())
        db: Session = self._session_factory()
        try:
            result = db.execute(delete(self.row_model).where(self.row_model.expires_at < now))
            db.commit()
            return result.rowcount or 0
        finally:
            db.close()


class SqlAuthorizationCodeStore(_SqlGrantStore[AuthorizationCode]):
    row_model = AuthorizationCodeRow
    key_column = "code"

    def _to_row(self, key, entry, expires_at):
        return AuthorizationCodeRow(
            code=key,
            client_id=entry.client_id,
            redirect_uri=entry.redirect_uri,
            subject=entry.subject,
            scope=" ".join(entry.scopes),
            code_challenge=entry.pkce_challenge,
            state=entry.state,
            expires_at=expires_at,
        )

    def _from_row(self, row):
        return AuthorizationCode(
            pkce_challenge=row.code_challenge,
            client_id=row.client_id,
            scopes=parse_scope(row.scope),
            redirect_uri=row.redirect_uri,
            subject=row.subject,
            state=row.state,
            expires_at=_to_timestamp(row.expires_at),
        )


class SqlRefreshTokenStore(_SqlGrantStore[RefreshToken]):
    row_model = RefreshTokenRow
    key_column = "token"

    def _to_row(self, key, entry, expires_at):
        return RefreshTokenRow(
            token=key,
            subject=entry.subject,
            client_id=entry.client_id,
            scope=" ".join(entry.scopes),
            expires_at=expires_at,
        )

    def _from_row(self, row):
        return RefreshToken(
            subject=row.subject,
            client_id=row.client_id,
            scopes=parse_scope(row.scope),
            expires_at=_to_timestamp(row.expires_at),
        )
