"""
Database utilities for the video studio backend.
Provides connection management and common query helpers.

All functions raise meaningful exceptions on failure - no silent failures.

Usage:
    from videostudio.db import transaction, fetch_one, query_one, Tables

    # Simple query
    job = query_one(f"SELECT * FROM {Tables.VIDEO_JOBS} WHERE id = %s", (job_id,))

    # Transaction with automatic commit/rollback
    with transaction() as cur:
        cur.execute(f"INSERT INTO {Tables.VIDEO_JOBS} (...) VALUES (...) RETURNING *", params)
        job = fetch_one(cur)
"""

from contextlib import contextmanager
from typing import Optional, Any, Dict, List

import psycopg
from psycopg.rows import dict_row

from videostudio.config import config


# ─────────────────────────────────────────────────────────────
# Custom Exceptions
# ─────────────────────────────────────────────────────────────
class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class DatabaseNotConfiguredError(DatabaseError):
    """Raised when database is not configured but an operation requires it."""
    def __init__(self, message: str = "Database is not configured"):
        super().__init__(message)


class DatabaseConnectionError(DatabaseError):
    """Raised when unable to connect to the database."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class DatabaseQueryError(DatabaseError):
    """Raised when a query fails."""
    def __init__(self, message: str, query: str = None, original_error: Exception = None):
        super().__init__(message)
        self.query = query
        self.original_error = original_error


class DatabaseIntegrityError(DatabaseError):
    """Raised on constraint violations (unique, foreign key, etc.)."""
    def __init__(self, message: str, constraint: str = None, original_error: Exception = None):
        super().__init__(message)
        self.constraint = constraint
        self.original_error = original_error


# ─────────────────────────────────────────────────────────────
# Connection State
# ─────────────────────────────────────────────────────────────
USE_DB = config.HAS_DATABASE

print(f"[DB] DATABASE_URL configured: {USE_DB}")


# ─────────────────────────────────────────────────────────────
# Connection Management
# ─────────────────────────────────────────────────────────────
def _create_connection():
    """
    Create a new database connection.
    Internal function - raises exceptions on failure.
    """
    if not USE_DB:
        raise DatabaseNotConfiguredError("DATABASE_URL is not set")

    try:
        conn = psycopg.connect(
            config.DATABASE_URL,
            connect_timeout=config.DB_CONNECT_TIMEOUT,
            row_factory=dict_row,
        )
        with conn.cursor() as cur:
            cur.execute(f"SET search_path TO {config.APP_SCHEMA}, public;")
        return conn
    except psycopg.OperationalError as e:
        raise DatabaseConnectionError(f"Failed to connect to database: {e}", original_error=e)


@contextmanager
def transaction():
    """
    Context manager for database transactions.
    Automatically commits on success, rolls back on exception.
    Yields a cursor with dict_row factory.

    Raises:
        DatabaseNotConfiguredError: If database is not configured
        DatabaseConnectionError: If connection fails
        DatabaseQueryError: If a query fails
        DatabaseIntegrityError: On constraint violations
    """
    conn = _create_connection()
    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except psycopg.errors.UniqueViolation as e:
        conn.rollback()
        constraint = getattr(e.diag, "constraint_name", None)
        raise DatabaseIntegrityError(
            f"Unique constraint violation: {e}",
            constraint=constraint,
            original_error=e,
        )
    except psycopg.errors.CheckViolation as e:
        conn.rollback()
        constraint = getattr(e.diag, "constraint_name", None)
        raise DatabaseIntegrityError(
            f"Check constraint violation: {e}",
            constraint=constraint,
            original_error=e,
        )
    except psycopg.Error as e:
        conn.rollback()
        raise DatabaseQueryError(f"Database error: {e}", original_error=e)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ─────────────────────────────────────────────────────────────
# Cursor Helpers (for use within transaction blocks)
# ─────────────────────────────────────────────────────────────
def fetch_one(cur) -> Optional[Dict[str, Any]]:
    """Fetch one row from cursor as dict. Returns None if no rows available."""
    row = cur.fetchone()
    if row is None:
        return None
    return dict(row)


def fetch_all(cur) -> List[Dict[str, Any]]:
    """Fetch all rows from cursor as list of dicts. Returns empty list if no rows."""
    return [dict(row) for row in cur.fetchall() or []]


# ─────────────────────────────────────────────────────────────
# Standalone Query Helpers (open their own transaction)
# ─────────────────────────────────────────────────────────────
def query_one(sql: str, params: tuple = None) -> Optional[Dict[str, Any]]:
    """
    Execute a query and return one row as dict.
    Opens its own transaction.
    """
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_one(cur)


def query_all(sql: str, params: tuple = None) -> List[Dict[str, Any]]:
    """
    Execute a query and return all rows as list of dicts.
    Opens its own transaction.
    """
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_all(cur)


def execute_returning(sql: str, params: tuple = None) -> Optional[Dict[str, Any]]:
    """
    Execute an INSERT/UPDATE with RETURNING clause.
    Opens its own transaction. Returns None when no row matched, which is how
    guarded (conditional) updates report a lost race.
    """
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_one(cur)


# ─────────────────────────────────────────────────────────────
# Schema-aware Table References
# ─────────────────────────────────────────────────────────────
class Tables:
    """Table name constants with schema prefixes."""
    VIDEO_JOBS = f"{config.APP_SCHEMA}.video_jobs"
    CREDIT_LEDGER = f"{config.APP_SCHEMA}.credit_ledger"


# ─────────────────────────────────────────────────────────────
# Startup
# ─────────────────────────────────────────────────────────────
def verify_connection() -> bool:
    """
    Test database connectivity.
    Returns True if connected, False otherwise.
    """
    if not USE_DB:
        return False
    try:
        result = query_one("SELECT 1 AS ok")
        return result is not None and result.get("ok") == 1
    except DatabaseError:
        return False


def ensure_schema() -> None:
    """
    Create the job and ledger tables if they don't exist.
    Called at app startup after connection is verified.
    """
    with transaction() as cur:
        cur.execute(f"CREATE SCHEMA IF NOT EXISTS {config.APP_SCHEMA}")
        cur.execute(f"""
            CREATE TABLE IF NOT EXISTS {Tables.VIDEO_JOBS} (
                id UUID PRIMARY KEY,
                owner_id TEXT NOT NULL,
                account_id TEXT NOT NULL,
                session_id TEXT,
                canvas_id TEXT,
                product_name TEXT,
                ad_index INTEGER,
                prompt TEXT NOT NULL,
                video_style TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'queued',
                provider TEXT NOT NULL,
                external_ref TEXT,
                progress_pct INTEGER NOT NULL DEFAULT 0,
                duration_seconds INTEGER NOT NULL,
                output_duration_seconds INTEGER,
                target_duration_seconds INTEGER,
                extension_step INTEGER NOT NULL DEFAULT 0,
                extension_total INTEGER NOT NULL DEFAULT 0,
                extension_video_uri TEXT,
                raw_video_url TEXT,
                final_video_url TEXT,
                thumbnail_url TEXT,
                overlay_config JSONB,
                credit_cost INTEGER NOT NULL DEFAULT 0,
                credits_refunded INTEGER NOT NULL DEFAULT 0,
                error_kind TEXT,
                error_message TEXT,
                warning TEXT,
                extension_started_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                CONSTRAINT video_jobs_step_le_total CHECK (extension_step <= extension_total)
            )
        """)
        cur.execute(f"""
            ALTER TABLE {Tables.VIDEO_JOBS}
            ADD COLUMN IF NOT EXISTS extension_started_at TIMESTAMPTZ
        """)
        cur.execute(f"""
            CREATE INDEX IF NOT EXISTS video_jobs_owner_created_idx
            ON {Tables.VIDEO_JOBS} (owner_id, created_at DESC)
        """)
        cur.execute(f"""
            CREATE TABLE IF NOT EXISTS {Tables.CREDIT_LEDGER} (
                id BIGSERIAL PRIMARY KEY,
                owner_id TEXT NOT NULL,
                account_id TEXT,
                job_id UUID,
                entry_type TEXT NOT NULL,
                amount INTEGER NOT NULL,
                label TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        cur.execute(f"""
            CREATE INDEX IF NOT EXISTS credit_ledger_job_idx
            ON {Tables.CREDIT_LEDGER} (job_id)
        """)
    print("[DB] Schema ensured")


def init_db() -> bool:
    """
    Initialize database connection and verify connectivity.
    Called at app startup. Returns True if database is ready.

    Raises:
        DatabaseConnectionError: If database is configured but connection fails
    """
    if not USE_DB:
        print("[DB] DATABASE_URL not set - using in-memory job store")
        return False

    if not verify_connection():
        raise DatabaseConnectionError("Connection test query failed")

    print("[DB] Database connection verified successfully")
    ensure_schema()
    return True


__all__ = [
    "USE_DB",
    "DatabaseError",
    "DatabaseNotConfiguredError",
    "DatabaseConnectionError",
    "DatabaseQueryError",
    "DatabaseIntegrityError",
    "transaction",
    "fetch_one",
    "fetch_all",
    "query_one",
    "query_all",
    "execute_returning",
    "Tables",
    "verify_connection",
    "ensure_schema",
    "init_db",
]
