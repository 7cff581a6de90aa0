"""PostgreSQL client for running the canvas backend against a local database.

Enabled with USE_LOCAL_DB=1 as an alternative to Supabase for development.
"""
from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2 import pool
from psycopg2.extras import Json, RealDictCursor

from src.infrastructure.config import Settings, get_settings

logger = logging.getLogger(__name__)

__all__ = ["Json", "PostgresClient", "get_postgres_client"]


class PostgresClient:
    """Pooled connections with commit/rollback handled per call."""

    def __init__(self, settings: Settings) -> None:
        try:
            self._pool = pool.SimpleConnectionPool(
                minconn=1,
                maxconn=10,
                host=settings.postgres_host,
                port=settings.postgres_port,
                database=settings.postgres_db,
                user=settings.postgres_user,
                password=settings.postgres_password,
            )
        except psycopg2.Error as exc:  # pragma: no cover
            raise RuntimeError(f"Failed to initialize PostgreSQL connection pool: {exc}") from exc

    @contextmanager
    def cursor(self) -> Generator[Any, None, None]:
        """Yield a dict cursor inside a transaction.

        The transaction commits when the block exits cleanly and rolls back
        otherwise; the connection always goes back to the pool.
        """
        conn = self._pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def fetch_one(self, query: str, params: tuple = ()) -> dict[str, Any] | None:
        with self.cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
            return dict(row) if row else None

    def fetch_all(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self.cursor() as cur:
            cur.execute(query, params)
            return [dict(row) for row in cur.fetchall()]

    def execute_returning(self, query: str, params: tuple = ()) -> dict[str, Any]:
        """Run an INSERT/UPDATE with a RETURNING clause and return the row."""
        row = self.fetch_one(query, params)
        if row is None:
            raise RuntimeError("Query did not return a row")
        return row

    def execute(self, query: str, params: tuple = ()) -> int:
        """Run an UPDATE/DELETE and return the affected row count."""
        with self.cursor() as cur:
            cur.execute(query, params)
            return cur.rowcount


_POSTGRES_CLIENT: PostgresClient | None = None


def get_postgres_client(settings: Settings | None = None) -> PostgresClient | None:
    """Shared client when USE_LOCAL_DB=1, otherwise None."""
    global _POSTGRES_CLIENT
    settings = settings or get_settings()
    if not settings.use_local_db:
        return None
    if _POSTGRES_CLIENT is None:
        logger.info("Using local PostgreSQL at %s:%s", settings.postgres_host, settings.postgres_port)
        _POSTGRES_CLIENT = PostgresClient(settings)
    return _POSTGRES_CLIENT
