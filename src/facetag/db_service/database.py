from __future__ import annotations

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar, cast

from loguru import logger
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine.interfaces import DBAPIConnection
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..common.utils import get_db_url

# Bound by init_db(); every DB service method opens its own session from here
SessionLocal: sessionmaker[Session] = cast(sessionmaker[Session], cast(object, None))
engine: Engine = cast(Engine, cast(object, None))

T = TypeVar("T")
P = ParamSpec("P")

_LOCK_MESSAGES = ("database is locked", "database is busy")


def is_memory_url(db_url: str) -> bool:
    return ":memory:" in db_url or db_url.strip() == "sqlite://"


def _sqlite_pragmas(dbapi_conn: DBAPIConnection, _connection_record: object) -> None:
    """Per-connection SQLite setup.

    File databases run in WAL mode because analysis tasks write while HTTP
    handlers read. Foreign keys are enforced everywhere; tag and reference-face
    cascades rely on them.
    """
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA database_list")
        files = [cast(str, row[2]) for row in cursor.fetchall()]
        if any(files):
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=30000")
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def create_db_engine(db_url: str, *, echo: bool = False) -> Engine:
    """Engine for ``db_url``; SQLite gets thread-shared connections and pragmas."""
    if not db_url.lower().startswith("sqlite"):
        return create_engine(db_url, echo=echo, pool_size=10, max_overflow=20, pool_pre_ping=True)

    kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False}}
    if is_memory_url(db_url):
        # A single shared connection, otherwise each session sees its own empty database
        kwargs["poolclass"] = StaticPool
    sqlite_engine = create_engine(db_url, echo=echo, **kwargs)
    event.listen(sqlite_engine, "connect", _sqlite_pragmas)
    return sqlite_engine


def init_db(db_url: str | None = None, create_tables: bool = True) -> None:
    """Bind the module-level session factory. A no-op when already bound."""
    global SessionLocal, engine
    if SessionLocal is not None:
        return
    engine = create_db_engine(db_url or get_db_url())
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    if create_tables:
        from .models import Base

        Base.metadata.create_all(bind=engine)
    logger.info(f"Database initialized: {engine.url.render_as_string(hide_password=True)}")


def close_db() -> None:
    global SessionLocal, engine
    if engine is not None:
        engine.dispose()
        logger.debug("Database engine disposed")
    SessionLocal = cast(sessionmaker[Session], cast(object, None))
    engine = cast(Engine, cast(object, None))


def with_retry(
    max_retries: int = 5, initial_delay: float = 0.1, max_delay: float = 2.0
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Retry a DB call while SQLite reports the database as locked.

    Any other OperationalError propagates on the first attempt.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            delay = initial_delay
            for attempt in range(1, max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except OperationalError as e:
                    message = str(e).lower()
                    if attempt == max_retries or not any(m in message for m in _LOCK_MESSAGES):
                        raise
                    logger.warning(
                        f"{func.__qualname__}: database locked, "
                        f"retry {attempt}/{max_retries} in {delay:.2f}s"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, max_delay)
            raise AssertionError("unreachable")

        return wrapper

    return decorator
