from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import Pool, StaticPool

from config import get_settings


def create_db_engine(database_url: str, poolclass: Optional[type[Pool]] = None) -> Engine:
    connect_args: dict[str, object] = {}
    engine_kwargs: dict[str, object] = {}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
        if ":memory:" in database_url or database_url.rstrip("/") in {
            "sqlite:",
            "sqlite+pysqlite:",
        }:
            # one shared connection, otherwise every session sees an empty db
            engine_kwargs["poolclass"] = StaticPool
    if poolclass is not None:
        engine_kwargs["poolclass"] = poolclass

    eng = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    if is_sqlite:
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()
    # built-in lower() only folds ASCII; match str.lower() for search and names
    dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)


engine = create_db_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
