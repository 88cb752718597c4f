"""Database infrastructure: engine, schema and transactional sessions."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Iterator, Mapping, Tuple

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import Session, SQLModel, create_engine

from ..config import BaseConfig
from ..errors import PersistenceError
from ..logging_config import get_logger

logger = get_logger("infra.database")

SessionFactory = Callable[[], ContextManager[Session]]


def create_db_engine(config: BaseConfig):
    """Create SQLModel engine from configuration."""
    engine_options = config.sqlalchemy_engine_options()
    return create_engine(config.DATABASE_URL, **engine_options)


def init_database(engine) -> None:
    """Initialize database schema."""
    # Import all models to ensure they're registered
    from .. import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


@contextmanager
def session_scope(engine) -> Iterator[Session]:
    """Provide a transactional scope around operations.

    Commits when the block exits cleanly, rolls back otherwise. Driver-level
    failures are re-raised as :class:`PersistenceError`; ledger errors
    propagate unchanged.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except DBAPIError as exc:
        session.rollback()
        logger.error("Database failure, unit of work rolled back", exc_info=True)
        raise PersistenceError("Persistence store unavailable", reason=str(exc.orig or exc)) from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_session_factory(engine) -> SessionFactory:
    """Create a session factory function yielding transactional scopes."""

    def factory() -> ContextManager[Session]:
        """Open a new unit of work."""
        return session_scope(engine)

    factory.engine = engine  # type: ignore[attr-defined]
    return factory


def compare_and_set(session: Session, row: SQLModel, values: Mapping[str, Any]) -> bool:
    """Write ``values`` to ``row`` only if its ``version`` is still the one this session read.

    On success the version is bumped and the in-memory row updated. Returns
    False when another writer changed the row first.
    """

    table = type(row).__table__  # type: ignore[attr-defined]
    version = row.version  # type: ignore[attr-defined]
    session.flush()
    result = session.connection().execute(
        update(table)
        .where(table.c.id == row.id)  # type: ignore[attr-defined]
        .where(table.c.version == version)
        .values({**values, "version": version + 1})
    )
    if result.rowcount != 1:
        return False
    for name, value in values.items():
        set_committed_value(row, name, value)
    set_committed_value(row, "version", version + 1)
    return True


def bootstrap_database(config: BaseConfig | None = None) -> Tuple:
    """Convenience bootstrap for engine + session_factory with schema init.

    Returns (engine, session_factory).
    """

    cfg = config or BaseConfig()
    engine = create_db_engine(cfg)
    init_database(engine)
    return engine, create_session_factory(engine)
