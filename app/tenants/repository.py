"""Tenant configuration storage."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from pydantic import ValidationError

from .config import TenantConfig

logger = logging.getLogger(__name__)


class TenantConfigRepository(Protocol):
    def get(self, tenant_id: UUID) -> TenantConfig: ...

    def save(self, tenant_id: UUID, config: TenantConfig, name: Optional[str] = None) -> None: ...


def parse_config(tenant_id: UUID, payload: Optional[Dict[str, Any]]) -> TenantConfig:
    """Build a :class:`TenantConfig` from a stored JSON document.

    Fields that fail validation are dropped and fall back to their
    defaults; a typo in one field (say, ``"Mon"`` as a store-hours weekday)
    leaves forbidden topics, escalation keywords and every other valid field
    in force.
    """

    if not payload:
        return TenantConfig()
    if not isinstance(payload, dict):
        logger.warning("Configuration for tenant %s is not an object, using defaults", tenant_id)
        return TenantConfig()
    try:
        return TenantConfig.model_validate(payload)
    except ValidationError as exc:
        invalid = {str(error["loc"][0]) for error in exc.errors() if error["loc"]}
        logger.warning(
            "Ignoring invalid configuration fields %s for tenant %s: %s",
            ", ".join(sorted(invalid)) or "<document>",
            tenant_id,
            exc,
        )
    kept = {key: value for key, value in payload.items() if key not in invalid}
    try:
        return TenantConfig.model_validate(kept)
    except ValidationError as exc:
        logger.warning("Invalid configuration for tenant %s, using defaults: %s", tenant_id, exc)
        return TenantConfig()


class PostgresTenantConfigRepository:
    """Reads ``tenants.config`` JSON documents."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def get(self, tenant_id: UUID) -> TenantConfig:
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT config FROM tenants WHERE id = %s", (tenant_id,))
            row = cur.fetchone()
        return parse_config(tenant_id, row["config"] if row else None)

    def save(self, tenant_id: UUID, config: TenantConfig, name: Optional[str] = None) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO tenants (id, name, config)
                VALUES (%s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    config = EXCLUDED.config,
                    name = COALESCE(%s, tenants.name),
                    updated_at = now()
                """,
                (
                    tenant_id,
                    name or config.business_name,
                    Jsonb(config.model_dump(mode="json")),
                    name,
                ),
            )


class InMemoryTenantConfigRepository:
    def __init__(self, configs: Optional[Dict[UUID, TenantConfig]] = None) -> None:
        self._configs: Dict[UUID, TenantConfig] = dict(configs or {})

    def get(self, tenant_id: UUID) -> TenantConfig:
        return self._configs.get(tenant_id) or TenantConfig()

    def save(self, tenant_id: UUID, config: TenantConfig, name: Optional[str] = None) -> None:
        self._configs[tenant_id] = config
