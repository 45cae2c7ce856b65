"""
Database engine and sessions for the relay. The engine is built once in the app lifespan
and kept on app.state; handlers get sessions through the get_db dependency.
"""
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from forge_relay.models import Base


def make_engine(database_url: str) -> Engine:
    """
    SQLite in-memory needs StaticPool so all connections share the same DB (tests).
    File-based SQLite needs check_same_thread=False for FastAPI's threadpool.
    """
    if database_url.startswith("sqlite:///:memory:"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if "sqlite" in database_url:
        return create_engine(database_url, connect_args={"check_same_thread": False})
    # Postgres: recycle idle connections; bounded wait for a pooled connection
    return create_engine(database_url, pool_pre_ping=True, pool_recycle=600, pool_timeout=5)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create the tokens tables if missing. Never alters existing tables."""
    Base.metadata.create_all(bind=engine)


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_db(request: Request):
    """Dependency: yield a DB session from the app's session factory."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
