from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from netwatch.core.config import settings

Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite connections are shared between the event loop and worker threads,
    so thread checks are disabled. In-memory SQLite keeps a single connection
    alive for the lifetime of the engine.
    """
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    # Register models on Base.metadata
    from netwatch.models import device, device_history  # noqa: F401

    Base.metadata.create_all(bind=engine)


engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = create_session_factory(engine)
