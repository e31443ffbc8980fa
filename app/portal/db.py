from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, current_app, g
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

ENGINE_KEY = "sqlalchemy_engine"
SESSIONMAKER_KEY = "sqlalchemy_sessionmaker"

# Pool sizing for Postgres; SQLite uses the driver defaults.
POSTGRES_POOL_OPTIONS: dict[str, object] = {
    "pool_recycle": 1800,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 30,
}


def engine_options(db_url: str) -> dict[str, object]:
    options: dict[str, object] = {"pool_pre_ping": True}
    if db_url.startswith("postgres"):
        options.update(POSTGRES_POOL_OPTIONS)
    elif db_url.startswith("sqlite"):
        # Requests and the dev server may hand a connection across threads.
        options["connect_args"] = {"check_same_thread": False}
    return options


def init_db(app: Flask) -> Engine:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **engine_options(db_url))
    app.extensions[ENGINE_KEY] = engine
    app.extensions[SESSIONMAKER_KEY] = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    app.logger.debug("Database engine ready (%s)", engine.url.get_backend_name())
    return engine


def db_session() -> Session:
    """Session bound to the current request; opened on first use."""
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        s = current_app.extensions[SESSIONMAKER_KEY]()
        g.db_session = s
    return s


def teardown_db_session(exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        return
    if exc is not None:
        s.rollback()
    s.close()
    g.db_session = None


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Session for scripts and tests: commits on success, rolls back on error.
    """
    s: Session = app.extensions[SESSIONMAKER_KEY]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
