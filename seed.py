"""Utility script to bootstrap the database with a demo tenant and catalog."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import psycopg
from dotenv import load_dotenv
from psycopg.conninfo import conninfo_to_dict, make_conninfo

from app.catalog.models import CatalogItem
from app.catalog.repository import PostgresCatalogRepository
from app.core.db import ensure_schema, get_conn
from app.tenants.config import TenantConfig
from app.tenants.repository import PostgresTenantConfigRepository

logger = logging.getLogger("seed")

DEFAULT_TENANT_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


@dataclass(slots=True)
class SeedConfig:
    """Configuration derived from the environment for the seed process."""

    db_url: str
    tenant_id: uuid.UUID
    tenant_name: str
    catalog_file: Path | None
    embed: bool


def _to_bool(value: str | None) -> bool:
    """Parse a truthy string value into ``bool``."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _safe_url(db_url: str) -> str:
    """Return a version of ``db_url`` with any password redacted."""

    try:
        params = conninfo_to_dict(db_url)
    except psycopg.ProgrammingError:
        return db_url
    if not params.get("password"):
        return db_url
    params["password"] = "***"
    return make_conninfo(**params)


def _build_database_url() -> str:
    """Compute the database URL from ``DATABASE_URL`` or ``PG*`` variables."""

    direct = os.getenv("DATABASE_URL")
    if direct:
        return direct

    host = os.getenv("PGHOST")
    port = os.getenv("PGPORT", "5432")
    database = os.getenv("PGDATABASE")
    user = os.getenv("PGUSER")
    password = os.getenv("PGPASSWORD")

    if not all([host, database, user]):
        raise RuntimeError(
            "DATABASE_URL is not configured and PGHOST/PGDATABASE/PGUSER are missing."
        )

    auth = user
    if password:
        auth = f"{user}:{password}"
    return f"postgresql://{auth}@{host}:{port}/{database}"


def _load_config() -> SeedConfig:
    """Load seed configuration from environment variables."""

    catalog_env = os.getenv("SEED_CATALOG_FILE")
    catalog_file = Path(catalog_env).expanduser() if catalog_env else None
    if catalog_file and not catalog_file.exists():
        logger.warning("Catalog file %s does not exist; using the demo catalog.", catalog_file)
        catalog_file = None

    return SeedConfig(
        db_url=_build_database_url(),
        tenant_id=uuid.UUID(os.getenv("SEED_TENANT_ID", str(DEFAULT_TENANT_ID))),
        tenant_name=os.getenv("SEED_TENANT_NAME", "Demo Store").strip(),
        catalog_file=catalog_file,
        embed=_to_bool(os.getenv("SEED_EMBED_CATALOG", "true")),
    )


def wait_for_database(max_attempts: int = 10, delay: float = 3.0) -> None:
    """Attempt to establish a database connection, retrying if necessary."""

    db_url = _build_database_url()
    safe_url = _safe_url(db_url)

    for attempt in range(1, max_attempts + 1):
        try:
            with psycopg.connect(db_url, connect_timeout=5) as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1")
        except Exception as exc:  # pragma: no cover - depends on external DB
            logger.info(
                "Database not ready (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            if attempt >= max_attempts:
                raise RuntimeError("Database did not become ready in time") from exc
            time.sleep(delay)
            continue

        logger.info("Database connection established after %d attempt(s): %s", attempt, safe_url)
        return


def demo_tenant_config(name: str) -> TenantConfig:
    """Business configuration used for the demo tenant."""

    return TenantConfig(
        business_name=name,
        description="Independent shop selling caps, tees and camp gear.",
        tone="warm and concise",
        language="auto",
        escalation_keywords=["refund", "speak to a human", "manager", "complaint"],
        forbidden_topics=["politics", "medical advice"],
        faqs="Do you ship internationally? Yes, to most countries.",
        store_hours={
            "timezone": "America/New_York",
            "days": {
                **{
                    day: {"open": "09:00", "close": "18:00"}
                    for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
                },
                "saturday": {"open": "10:00", "close": "14:00"},
                "sunday": {"closed": True},
            },
        },
        return_policy="Returns accepted within 30 days with receipt.",
        shipping_policy="Free shipping on orders over $50.",
        contact_email="help@demo.store",
    )


def demo_catalog(tenant_id: uuid.UUID) -> list[CatalogItem]:
    """A handful of items covering apparel and homeware."""

    return [
        CatalogItem(
            tenant_id=tenant_id,
            name="Dad Hat",
            description="Unstructured cotton cap with an adjustable strap.",
            price=Decimal("24.00"),
            category="Hats",
            variant_attributes={"Color": ["Blue", "Black", "Khaki"]},
            sku="HAT-001",
        ),
        CatalogItem(
            tenant_id=tenant_id,
            name="Classic Tee",
            description="Soft crew neck t-shirt in ringspun cotton.",
            price=Decimal("19.50"),
            category="Shirts",
            variant_attributes={"Size": ["S", "M", "L", "XL"], "Colour": ["White", "Red"]},
            sku="TEE-001",
        ),
        CatalogItem(
            tenant_id=tenant_id,
            name="Camp Mug",
            description="Enamel mug for coffee on the trail, holds 12 oz.",
            price=Decimal("14.00"),
            category="Drinkware",
            variant_attributes={"Color": ["Green"]},
            sku="MUG-001",
        ),
    ]


def _load_catalog(config: SeedConfig) -> list[CatalogItem]:
    if config.catalog_file is None:
        return demo_catalog(config.tenant_id)
    rows = json.loads(config.catalog_file.read_text(encoding="utf-8"))
    return [
        CatalogItem(
            tenant_id=config.tenant_id,
            name=row["name"],
            description=row.get("description", ""),
            price=Decimal(str(row.get("price", "0"))),
            category=row.get("category", ""),
            variant_attributes=row.get("variant_attributes") or {},
            sku=row.get("sku"),
            product_url=row.get("product_url"),
        )
        for row in rows
    ]


def _run_schema_migrations(db_url: str) -> None:
    """Execute idempotent schema creation."""

    with psycopg.connect(db_url) as conn:
        ensure_schema(conn)
    logger.info("Schema ensured successfully.")


def _provision_tenant(config: SeedConfig) -> None:
    with get_conn(config.db_url, autocommit=True) as conn:
        PostgresTenantConfigRepository(conn).save(
            config.tenant_id, demo_tenant_config(config.tenant_name), name=config.tenant_name
        )
    logger.info("Tenant %s (%s) configured", config.tenant_name, config.tenant_id)


def _seed_catalog(config: SeedConfig) -> int:
    """Insert catalog items whose SKU is not present yet."""

    items = _load_catalog(config)
    created = 0
    with get_conn(config.db_url, autocommit=True) as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT sku FROM catalog_items WHERE tenant_id = %s AND sku IS NOT NULL",
                (config.tenant_id,),
            )
            existing = {row[0] for row in cur.fetchall()}
        repository = PostgresCatalogRepository(conn)
        for item in items:
            if item.sku and item.sku in existing:
                logger.info("Catalog item %s already present; skipping.", item.sku)
                continue
            repository.save(item)
            created += 1
    logger.info("Seeded %d catalog item(s)", created)
    return created


async def main() -> None:
    """Entrypoint for the seeding workflow."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    wait_for_database()

    config = _load_config()
    logger.info("Starting seed process using %s", _safe_url(config.db_url))

    os.environ.setdefault("DATABASE_URL", config.db_url)

    await asyncio.to_thread(_run_schema_migrations, config.db_url)
    await asyncio.to_thread(_provision_tenant, config)
    await asyncio.to_thread(_seed_catalog, config)

    if config.embed:
        from app.runtime import run_catalog_sync

        report = await asyncio.to_thread(run_catalog_sync, config.tenant_id)
        logger.info(
            "Embedded %d item(s), %d failed, %d skipped",
            report.embedded,
            report.failed,
            report.skipped,
        )

    logger.info("Seed process completed. Tenant ID: %s", config.tenant_id)


if __name__ == "__main__":
    asyncio.run(main())
