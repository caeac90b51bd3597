from __future__ import annotations
from pathlib import Path

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .models import Base
from ..exceptions import StoreUnavailable
from ..paths import db_file

log = structlog.get_logger()


def default_db_path() -> Path:
    return db_file()


def _sqlite_pragmas(dbapi_conn, _record):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL;")
    cur.execute("PRAGMA synchronous=NORMAL;")
    cur.execute("PRAGMA foreign_keys=ON;")
    cur.execute("PRAGMA busy_timeout=30000;")
    cur.close()


def get_engine(db_url: str | None = None):
    if not db_url:
        db_file = default_db_path()
        db_file.parent.mkdir(parents=True, exist_ok=True)
        db_url = f"sqlite:///{db_file}"
    is_sqlite = db_url.startswith("sqlite")
    try:
        engine = create_engine(
            db_url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30} if is_sqlite else {},
        )
        # pragmas are per connection; the download pool opens several
        if is_sqlite:
            event.listen(engine, "connect", _sqlite_pragmas)
        with engine.connect():
            pass
    except SQLAlchemyError as e:
        log.error("db_open_failed", url=db_url, error=str(e))
        raise StoreUnavailable(f"cannot open catalog database: {e}") from e
    return engine


def init_db(engine) -> None:
    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as e:
        log.error("db_init_failed", error=str(e))
        raise StoreUnavailable(f"cannot create catalog schema: {e}") from e


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
