"""
Module: supply_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  The single point of database
    connection configuration.
Architecture position: Kernel > DB.  May import from db/base.py.
    create_tables() imports the module ORM registry lazily so that every
    table is known to Base.metadata before CREATE runs.

Invariants enforced:
    - PostgreSQL: READ COMMITTED, with explicit row-level locking
      (SELECT ... FOR UPDATE) where stronger isolation is needed.
    - SQLite: a transaction that may write starts with BEGIN IMMEDIATE so
      writers queue on the database lock (busy timeout) instead of failing
      on lock upgrade.  A snapshot read (``begin_snapshot_read``) starts
      with a plain deferred BEGIN and never takes the write lock.  File
      databases run in WAL mode, so readers proceed while a writer holds
      its transaction open.  Foreign keys are enforced.  SAVEPOINT works
      because the driver's own transaction handling is disabled.
    - Sessions never expire attributes on commit (DTOs built before commit
      remain valid).

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
    - OperationalError ("database is locked") if an SQLite writer waits
      longer than the busy timeout.

Audit relevance:
    session_scope() guarantees commit-or-rollback for every unit of work,
    the foundation of the all-or-nothing guarantee for multi-step
    transitions (GRN completion, payment application).
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from supply_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

SQLITE_BUSY_TIMEOUT_MS = 30_000

# Connection execution option marking a transaction that only reads.
SNAPSHOT_READ = "supply_snapshot_read"


def _is_sqlite_memory_url(database_url: str) -> bool:
    return ":memory:" in database_url or database_url.rstrip("/") == "sqlite:"


def _install_sqlite_transaction_handling(engine: Engine, wal: bool) -> None:
    """Take over BEGIN from pysqlite so transactions and savepoints behave."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Disable pysqlite's implicit BEGIN; SQLAlchemy emits it below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(SNAPSHOT_READ):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create a configured engine without touching module-level state.

    SQLite URLs get the transaction handling described in the module
    docstring; in-memory SQLite uses a single shared connection.
    PostgreSQL gets a QueuePool with pre-ping and READ COMMITTED.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {
            "echo": echo,
            "connect_args": {"check_same_thread": False},
        }
        in_memory = _is_sqlite_memory_url(database_url)
        if in_memory:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
        _install_sqlite_transaction_handling(engine, wal=not in_memory)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
    return engine


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options: Any) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Postconditions: get_engine/get_session/session_scope use this engine.
        A second call replaces the first.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(database_url, echo=echo, **pool_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """Get a new session instance."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Useful for multi-threaded callers where each thread needs its own session.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def begin_snapshot_read(session: Session) -> None:
    """
    Open the session's next transaction as a read-only snapshot.

    No-op when a transaction is already open.  On SQLite the transaction
    starts with a deferred BEGIN, so it never waits for (or blocks) a
    writer; other backends are unaffected.  The caller must not write in
    this transaction.
    """
    if not session.in_transaction():
        session.connection(execution_options={SNAPSHOT_READ: True})


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    On normal exit the session is committed and closed; on exception it is
    rolled back, closed, and the exception re-raised.

    Usage:
        with session_scope() as session:
            ledger = InventoryLedger(session)
            ...
    """
    session = get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """
    Create every table known to the kernel and the modules.

    Args:
        engine: Target engine; defaults to the module-level engine.
    """
    from supply_kernel.db.base import Base
    from supply_modules._orm_registry import import_all_orm_models

    target = engine or get_engine()
    import_all_orm_models()
    Base.metadata.create_all(target)
    logger.info(
        "tables_created",
        extra={"table_count": len(Base.metadata.tables)},
    )


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from supply_kernel.db.base import Base

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Reset the engine and session factory (test cleanup)."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


def _atexit_dispose() -> None:
    """Dispose the engine on process exit to release pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)


def is_postgres(engine: Engine | None = None) -> bool:
    """Check if the given (or current) engine is PostgreSQL."""
    target = engine or _engine
    return target is not None and target.dialect.name == "postgresql"
