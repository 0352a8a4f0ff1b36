"""
Module: production_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factories and schema
    creation.  This is the single point of database connection configuration
    for the kernel.  Engines are owned by whoever builds them (normally
    ProductionTracker.from_config); there is no process-wide engine.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py.  MUST NOT import from repositories/, services/ or
    selectors/ (create_tables imports models lazily).

Backends:
    - PostgreSQL (production): pooled engine at READ COMMITTED, with
      SELECT ... FOR UPDATE row locks serializing ledger writes per style.
    - SQLite (tests, local runs): file or in-memory.  SQLite has no row
      locks; the whole database is locked per write transaction instead.
      In-memory databases use a StaticPool, so every session shares one
      DBAPI connection; the engine lets one thread at a time hold it.

Failure modes:
    - Connection pool exhaustion if pool_size + max_overflow is exceeded.
"""

import threading

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from production_kernel.logging_config import get_logger

logger = get_logger("db.engine")


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
    Create an Engine for ``database_url``.

    Args:
        database_url: SQLAlchemy URL (postgresql://... or sqlite://...).
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool (PostgreSQL).
        max_overflow: Max connections beyond pool_size (PostgreSQL).
        pool_pre_ping: If True, test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        in_memory = url.database in (None, "", ":memory:")
        kwargs = {"connect_args": {"check_same_thread": False}}
        if in_memory:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            # pysqlite's implicit BEGIN handling defers locking; take the
            # write lock at BEGIN so ledger transactions serialize.
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        if in_memory:
            _serialize_shared_connection(engine)

        logger.info(
            "engine_built",
            extra={"dialect": "sqlite", "in_memory": in_memory, "echo": echo},
        )
        return engine

    engine = create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )
    logger.info(
        "engine_built",
        extra={
            "dialect": engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )
    return engine


def _serialize_shared_connection(engine: Engine) -> None:
    """
    Let one thread at a time hold the engine's single connection.

    A session checks the connection out when its transaction begins and
    back in after commit or rollback has finished, so a session on another
    thread waits instead of issuing BEGIN inside a transaction it does not
    own.  A thread that checks out again while holding the lock keeps it
    until its next checkin.
    """
    lock = threading.Lock()
    holder = threading.local()

    @event.listens_for(engine, "checkout")
    def _acquire(dbapi_connection, connection_record, connection_proxy):
        if not getattr(holder, "held", False):
            lock.acquire()
            holder.held = True

    @event.listens_for(engine, "checkin")
    def _release(dbapi_connection, connection_record):
        if getattr(holder, "held", False):
            holder.held = False
            lock.release()


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory used by every repository (objects survive commit)."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    """Create all kernel tables and register the ORM immutability listeners."""
    from production_kernel.db.base import Base
    from production_kernel.db.immutability import register_immutability_listeners
    import production_kernel.models  # noqa: F401  (populates Base.metadata)

    Base.metadata.create_all(engine)
    register_immutability_listeners()
    logger.info("tables_created", extra={"dialect": engine.dialect.name})


def drop_tables(engine: Engine) -> None:
    """Drop all tables.  Used by test fixtures."""
    from production_kernel.db.base import Base
    import production_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)
