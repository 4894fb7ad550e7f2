"""Database engine and session factory."""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let pysqlite honour SAVEPOINT and foreign keys.

    pysqlite issues its own BEGIN lazily, which breaks nested
    transactions; disable that and emit BEGIN ourselves.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, echo: bool = False, **kwargs) -> Engine:
    """Create an engine, applying the SQLite recipe when needed."""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = create_engine(database_url, echo=echo, **kwargs)
        enable_sqlite_savepoints(engine)
        return engine
    return create_engine(database_url, echo=echo, pool_pre_ping=True, **kwargs)


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.database_echo)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
