import logging
from typing import Any
from typing import Iterator

from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from entityforge.config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()


# Create Base class
Base = declarative_base()


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create a SQLAlchemy engine with the given URL and options.

    Args:
        db_url: Database connection URL
        **kwargs: Additional arguments for create_engine

    Returns:
        A SQLAlchemy Engine instance
    """
    connect_args = kwargs.pop("connect_args", {})
    if "sqlite" in db_url:
        if "check_same_thread" not in connect_args:
            connect_args["check_same_thread"] = False
        connect_args.setdefault("timeout", 30)

    return create_engine(db_url, connect_args=connect_args, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    """Create a sessionmaker bound to the given engine.

    Args:
        engine: SQLAlchemy Engine instance

    Returns:
        A sessionmaker class
    """
    # `expire_on_commit=False` keeps attributes accessible after a commit so
    # route handlers can serialise rows once the transaction is closed.
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


# Default engine and sessionmaker instances for app usage.  Tests overwrite
# ``entityforge.database.default_session_factory`` or override ``get_db``.

default_engine = make_engine(_settings.resolved_database_url)
default_session_factory = make_sessionmaker(default_engine)


def get_session_factory() -> sessionmaker:
    """Return the session factory the application currently uses."""

    return default_session_factory


def get_db(session_factory: Any = None) -> Iterator[Session]:
    """Dependency provider for database sessions.

    Args:
        session_factory: Optional custom session factory

    Yields:
        SQLAlchemy Session object
    """
    factory = session_factory or get_session_factory()
    db = factory()
    try:
        yield db
    finally:
        db.close()


def initialize_database(engine: Engine = None) -> None:
    """Initialize database tables using the given engine.

    If no engine is provided, uses the default engine.

    Args:
        engine: Optional engine to use, defaults to default_engine
    """
    # Import all models to ensure they are registered with Base
    from entityforge.models.models import EntityDefinition  # noqa: F401
    from entityforge.models.models import EntityRecord  # noqa: F401
    from entityforge.models.models import User  # noqa: F401

    target_engine = engine or default_engine
    Base.metadata.create_all(bind=target_engine)
    logger.debug("Database tables ensured on %s", target_engine.url)
