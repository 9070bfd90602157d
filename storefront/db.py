from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import get_settings

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str, **kwargs) -> Engine:
    """Engine for the ledger database.

    SQLite connections are shared with FastAPI's worker threads and must
    enforce the order/product foreign keys, so both are switched on here.
    """
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    db_engine = create_engine(url, connect_args=connect_args, future=True, **kwargs)
    if is_sqlite:
        event.listen(db_engine, "connect", _enable_sqlite_foreign_keys)
    return db_engine


def make_sessionmaker(db_engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine, future=True)


engine = make_engine(get_settings().database_url)
SessionLocal = make_sessionmaker(engine)


def utcnow() -> datetime:
    # Stored naive in UTC; SQLite drops tzinfo on read.
    return datetime.now(timezone.utc).replace(tzinfo=None)
