"""Database helpers for tenant-aware psycopg connections."""

from __future__ import annotations

import logging
from pathlib import Path
from uuid import UUID

import psycopg
from pgvector.psycopg import register_vector

from ..settings import get_settings
from .tenant_context import get_current_tenant_id

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "schema.sql"


def get_conn(
    database_url: str | None = None, *, autocommit: bool = False
) -> psycopg.Connection:
    """Open a PostgreSQL connection and register pgvector type adapters.

    The DSN defaults to ``DATABASE_URL``. The caller is responsible for
    closing the returned connection. Request handlers and background jobs use
    ``autocommit=True`` so each conditional update commits on its own and no
    row lock is held across a completion or delivery call.
    """

    dsn = database_url or get_settings().database_url
    if not dsn:
        raise RuntimeError("DATABASE_URL not configured")
    conn = psycopg.connect(dsn, autocommit=autocommit)
    register_vector(conn)
    return conn


def get_required_tenant_id(tenant_id: str | UUID | None = None) -> UUID:
    """Return the current tenant identifier or raise ``RuntimeError``."""

    effective = tenant_id or get_current_tenant_id()
    if effective is None:
        raise RuntimeError("Tenant context missing")
    if isinstance(effective, UUID):
        return effective
    try:
        return UUID(str(effective))
    except ValueError as exc:
        raise RuntimeError("Invalid tenant identifier") from exc


def ensure_schema(conn: psycopg.Connection, schema_sql_path: Path = SCHEMA_PATH) -> None:
    """Apply ``schema.sql``.

    The schema only uses ``IF NOT EXISTS`` clauses so running it repeatedly
    is non-destructive.
    """

    with conn.cursor() as cur:
        cur.execute(schema_sql_path.read_text(encoding="utf-8"))
    conn.commit()
    logger.info("Schema ensured from %s", schema_sql_path)
