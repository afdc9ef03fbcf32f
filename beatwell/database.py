"""Local SQLite database setup for the on-device entity store."""
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from beatwell.config import settings

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(database_url: str | None = None) -> Engine:
    """
    Create an engine for the local store.

    SQLite parent directories are created on demand and foreign keys are
    switched on for every connection (SQLite leaves them off by default).
    """
    url = database_url or settings.resolved_database_url

    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        db_path = url.split("///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, connect_args=connect_args)

    if url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    # Rows handed out by LocalStore are read after their session closes
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    import beatwell.models  # noqa: F401  (registers models on Base.metadata)

    Base.metadata.create_all(engine)
