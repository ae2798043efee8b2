"""
habitquest.database.engine — Database Connection & Async Helper
================================================================

SQLAlchemy + psycopg2 is **synchronous**.  The batch scanner runs on an
``asyncio`` event loop, so every store call made from async code goes
through :func:`run_db`, which ships the synchronous function to the default
thread pool via ``asyncio.to_thread()``.

Usage::

    from habitquest.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside a coroutine:
    report = await run_db(check, ctx, user_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from habitquest.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine`.

    *url* defaults to the ``DATABASE_URL`` environment variable.  SQLite
    URLs skip the pool sizing arguments, which SQLite's pool rejects.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if url.startswith("sqlite"):
        engine = create_engine(url, echo=False)
    else:
        engine = create_engine(
            url,
            echo=False,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,   # Reconnect stale connections automatically
            pool_timeout=10,
            pool_recycle=3600,
        )
    logger.info("Database engine created → %s", engine.url.host or engine.url.database)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`habitquest.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** store-backed function on a background thread.

    Note that a thread cannot be interrupted: when the caller wraps this in
    ``asyncio.wait_for`` and times out, the worker keeps running until it
    checks a cancel event of its own.  Shield the task and await it after
    the timeout to know when it has stopped.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
