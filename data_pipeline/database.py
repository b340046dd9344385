"""
Database connection pool and read helpers.

Uses psycopg2 with a threaded connection pool so the fetch layer can issue its
independent reads concurrently.  The rollup engine never writes: connections
are opened read-only with a server-side statement timeout.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

import psycopg2
import psycopg2.extras
import psycopg2.pool

from config.settings import get_settings

logger = logging.getLogger(__name__)

_pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None


def _get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """Lazily initialise a threaded connection pool."""
    global _pool
    if _pool is None or _pool.closed:
        settings = get_settings()
        cfg = settings.db
        _pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=max(2, settings.fetch.max_workers + 1),
            host=cfg.host,
            port=cfg.port,
            dbname=cfg.dbname,
            user=cfg.user,
            password=cfg.password,
            options=f"-c statement_timeout={cfg.statement_timeout_ms}",
        )
        logger.info("Database connection pool initialised (%s:%s/%s)", cfg.host, cfg.port, cfg.dbname)
    return _pool


@contextmanager
def get_connection():
    """Yield a read-only connection from the pool; auto-return on exit."""
    pool = _get_pool()
    conn = pool.getconn()
    try:
        conn.set_session(readonly=True, autocommit=True)
        yield conn
    finally:
        pool.putconn(conn)


@contextmanager
def get_cursor(cursor_factory=None):
    """Yield a cursor (default: RealDictCursor) within a managed connection."""
    factory = cursor_factory or psycopg2.extras.RealDictCursor
    with get_connection() as conn:
        with conn.cursor(cursor_factory=factory) as cur:
            yield cur


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------

def fetch_all(sql: str, params: Optional[Sequence] = None) -> List[Dict[str, Any]]:
    """Run a SELECT and return all rows as dicts."""
    with get_cursor() as cur:
        cur.execute(sql, params)
        return cur.fetchall()


def fetch_one(sql: str, params: Optional[Sequence] = None) -> Optional[Dict[str, Any]]:
    """Run a SELECT and return the first row or None."""
    with get_cursor() as cur:
        cur.execute(sql, params)
        return cur.fetchone()


def close_pool() -> None:
    """Shut down the connection pool."""
    global _pool
    if _pool and not _pool.closed:
        _pool.closeall()
        logger.info("Database connection pool closed")
        _pool = None
