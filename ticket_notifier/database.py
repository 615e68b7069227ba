"""Database engine, session factory and declarative base."""
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings


def _engine_kwargs(url: str, busy_timeout: float | None) -> dict:
    if url.startswith("sqlite"):
        # Worker threads share the engine; each one opens its own session.
        return {
            "connect_args": {
                "check_same_thread": False,
                "timeout": busy_timeout if busy_timeout is not None else settings.SQLITE_BUSY_TIMEOUT_SECONDS,
            }
        }
    return {
        "pool_pre_ping": True,
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
    }


def _take_write_lock_on_begin(engine: Engine) -> None:
    """
    Start every SQLite transaction with BEGIN IMMEDIATE.

    SQLite ignores SELECT ... FOR UPDATE, so the ledgers' check-then-write is
    serialized across processes by the database write lock instead. pysqlite's
    own transaction handling is switched off so the BEGIN is ours.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_ledger_engine(url: str, *, busy_timeout: float | None = None) -> Engine:
    engine = create_engine(url, **_engine_kwargs(url, busy_timeout))
    if engine.dialect.name == "sqlite":
        _take_write_lock_on_begin(engine)
    return engine


engine = create_ledger_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_ledger_store() -> None:
    """Fail fast when the ledger database cannot be reached."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
