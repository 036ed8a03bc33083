import json
import logging
import os
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor

from .models import build_session, format_timestamp, normalize_players, normalize_settings, now_iso

logger = logging.getLogger(__name__)

_POOL: Optional[pg_pool.AbstractConnectionPool] = None

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sessions (
  id TEXT PRIMARY KEY,
  created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
  updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
  settings JSONB NOT NULL DEFAULT '{}'::jsonb,
  players JSONB NOT NULL DEFAULT '[]'::jsonb
);
CREATE INDEX IF NOT EXISTS sessions_created_at_idx ON sessions (created_at DESC);
"""

_COLUMNS = "id, created_at, updated_at, settings, players"

_SCHEMA_READY = False
_SCHEMA_LOCK = threading.Lock()


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    return url


def _connect_kwargs() -> Dict[str, Any]:
    """Connection kwargs: connect_timeout (default 10s) and TCP keepalives.

    Keepalives are on unless DB_KEEPALIVES is 0/false; the IDLE, INTERVAL and
    COUNT tunables are passed through when set.
    """
    kwargs: Dict[str, Any] = {"connect_timeout": _env_int("DB_CONNECT_TIMEOUT", 10)}
    ka_env = os.environ.get("DB_KEEPALIVES")
    kwargs["keepalives"] = 0 if ka_env is not None and ka_env.lower() in ("0", "false") else 1
    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        value = _env_int(env_name)
        if value is not None:
            kwargs[key] = value
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Create the global connection pool; a no-op when one exists or no URL is set."""
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def close_pool() -> None:
    global _POOL
    if _POOL is not None:
        _POOL.closeall()
        _POOL = None


def _checkout_healthy(pool) -> Any:
    """Return a pooled connection that answers ``SELECT 1``; one replacement is tried."""
    for attempt in range(2):
        conn = pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
            if not getattr(conn, "autocommit", False):
                conn.rollback()
            return conn
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            logger.warning("Discarding stale pooled connection (attempt %d)", attempt + 1)
            pool.putconn(conn, close=True)
    raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")


@contextmanager
def _get_conn():
    """Yield a connection from the pool if available, else a direct one.

    Rolls back on error; pooled connections go back to the pool idle.
    """
    url = _database_url()
    if _POOL is not None:
        conn = _checkout_healthy(_POOL)
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            # status 1/2/3 = active, in transaction, in error
            if getattr(conn, "closed", 0) == 0 and getattr(conn, "status", 0) in (1, 2, 3):
                conn.rollback()
            _POOL.putconn(conn)
    else:
        conn = psycopg2.connect(url, **_connect_kwargs())
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


def ensure_schema() -> None:
    """Create the sessions table and index once per process.

    Concurrent first callers wait on the same lock and only one of them runs
    the DDL. A failure leaves the flag unset so the next call tries again.
    """
    global _SCHEMA_READY
    if _SCHEMA_READY:
        return
    with _SCHEMA_LOCK:
        if _SCHEMA_READY:
            return
        with _get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
        logger.info("sessions schema ensured")
        _SCHEMA_READY = True


def _row_to_session(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not row:
        return None
    players = row.get("players")
    return {
        "id": row.get("id"),
        "createdAt": format_timestamp(row.get("created_at")),
        "updatedAt": format_timestamp(row.get("updated_at")),
        "settings": row.get("settings") or {},
        "players": players if isinstance(players, list) else [],
    }


def list_sessions() -> List[Dict[str, Any]]:
    ensure_schema()
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(f"SELECT {_COLUMNS} FROM sessions ORDER BY created_at DESC")
        return [_row_to_session(r) for r in cur.fetchall() or []]


def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    ensure_schema()
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(f"SELECT {_COLUMNS} FROM sessions WHERE id = %s LIMIT 1", (session_id,))
        return _row_to_session(cur.fetchone())


def create_session(payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Insert a session; an existing id is overwritten except for created_at."""
    session = build_session(payload)
    ensure_schema()
    with _get_conn() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                INSERT INTO sessions (id, created_at, updated_at, settings, players)
                VALUES (%s, %s, %s, %s::jsonb, %s::jsonb)
                ON CONFLICT (id) DO UPDATE SET
                    updated_at = EXCLUDED.updated_at,
                    settings = EXCLUDED.settings,
                    players = EXCLUDED.players
                RETURNING {_COLUMNS}
                """,
                (
                    session["id"],
                    session["createdAt"],
                    session["updatedAt"],
                    json.dumps(session["settings"]),
                    json.dumps(session["players"]),
                ),
            )
            row = cur.fetchone()
        conn.commit()
    return _row_to_session(row)  # type: ignore[return-value]


def update_session(session_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Merge ``payload`` into the stored row in a single UPDATE statement.

    ``settings || patch`` gives the key-by-key merge; a NULL players parameter
    keeps the stored roster.
    """
    payload = payload or {}
    patch = normalize_settings(payload.get("settings"))
    players = payload.get("players")
    players_json = json.dumps(normalize_players(players)) if isinstance(players, list) else None
    ensure_schema()
    with _get_conn() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                UPDATE sessions
                SET updated_at = GREATEST(%s::timestamptz, updated_at),
                    settings = settings || %s::jsonb,
                    players = COALESCE(%s::jsonb, players)
                WHERE id = %s
                RETURNING {_COLUMNS}
                """,
                (now_iso(), json.dumps(patch), players_json, session_id),
            )
            row = cur.fetchone()
        conn.commit()
    return _row_to_session(row)


def ping() -> bool:
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute("SELECT 1")
        cur.fetchone()
    return True


__all__ = [
    "SCHEMA_SQL",
    "close_pool",
    "create_session",
    "ensure_schema",
    "get_session",
    "init_pool",
    "list_sessions",
    "ping",
    "update_session",
]
