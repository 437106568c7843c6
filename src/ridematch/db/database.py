"""Database engine initialization and connection management."""

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .schema import SCHEMA_VERSION, Base, StoreMetadata


def init_database(url: str) -> sessionmaker[Any]:
    """Create tables if needed and return a session factory."""
    parsed = make_url(url)
    engine_kwargs: dict[str, Any] = {"echo": False}

    if parsed.get_backend_name() == "sqlite":
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if parsed.database in (None, "", ":memory:"):
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
        else:
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, **engine_kwargs)
    Base.metadata.create_all(engine)

    session_maker = sessionmaker(bind=engine)

    with session_maker() as session:
        schema_version = session.get(StoreMetadata, "schema_version")
        if not schema_version:
            session.add(StoreMetadata(key="schema_version", value=SCHEMA_VERSION))
            session.commit()

    return session_maker
