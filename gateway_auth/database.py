"""
Engine and session factory for the client registry and the database grant stores.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gateway_auth.config import DATABASE_URL
from gateway_auth.models import Base


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {}
    # Sync endpoints run on FastAPI's thread pool
    options = {"connect_args": {"check_same_thread": False}}
    if url.startswith("sqlite:///:memory:"):
        # One shared connection, or each session would see an empty database
        options["poolclass"] = StaticPool
    return options


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create registry and grant tables if missing."""
    Base.metadata.create_all(bind=engine)
