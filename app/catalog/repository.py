"""Persistence for catalog items."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from .models import CatalogItem
from .normalizer import as_value_list


class CatalogItemNotFoundError(RuntimeError):
    """Raised when a catalog item could not be located."""


class CatalogRepository(Protocol):
    """Abstraction over catalog storage used by indexing and retrieval."""

    def get(self, tenant_id: UUID, item_id: UUID) -> Optional[CatalogItem]: ...

    def get_many(self, tenant_id: UUID, item_ids: Sequence[UUID]) -> List[CatalogItem]: ...

    def list_pending(
        self, limit: int, tenant_id: Optional[UUID] = None
    ) -> List[CatalogItem]:
        """Stale active items, never-attempted content versions first."""
        ...

    def save(self, item: CatalogItem) -> CatalogItem: ...

    def mark_embedded(
        self,
        tenant_id: UUID,
        item_id: UUID,
        *,
        embedding_text: str,
        embedding_model: str,
        embedded_at: datetime,
    ) -> None: ...

    def mark_attempted(
        self, tenant_id: UUID, item_id: UUID, attempted_at: datetime
    ) -> None: ...

    def mark_all_stale(self, tenant_id: UUID) -> int: ...


class PostgresCatalogRepository:
    """PostgreSQL implementation of :class:`CatalogRepository`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def get(self, tenant_id: UUID, item_id: UUID) -> Optional[CatalogItem]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM catalog_items WHERE tenant_id = %s AND id = %s",
                (tenant_id, item_id),
            )
            row = cur.fetchone()
        return self._row_to_item(row) if row else None

    def get_many(self, tenant_id: UUID, item_ids: Sequence[UUID]) -> List[CatalogItem]:
        if not item_ids:
            return []
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM catalog_items WHERE tenant_id = %s AND id = ANY(%s)",
                (tenant_id, list(item_ids)),
            )
            rows = cur.fetchall()
        return [self._row_to_item(row) for row in rows]

    def list_pending(
        self, limit: int, tenant_id: Optional[UUID] = None
    ) -> List[CatalogItem]:
        clauses = [
            "is_active",
            "(embedding IS NULL OR embedded_at IS NULL OR updated_at > embedded_at)",
        ]
        params: List[Any] = []
        if tenant_id is not None:
            clauses.append("tenant_id = %s")
            params.append(tenant_id)
        params.append(limit)
        query = (
            "SELECT * FROM catalog_items WHERE "
            f"{' AND '.join(clauses)} "
            "ORDER BY COALESCE(embed_attempted_at >= updated_at, FALSE), "
            "embed_attempted_at ASC NULLS FIRST, updated_at ASC LIMIT %s"
        )
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [self._row_to_item(row) for row in rows]

    def save(self, item: CatalogItem) -> CatalogItem:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO catalog_items
                    (id, tenant_id, name, description, price, category, sku, product_url,
                     variant_attributes, is_active, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, now())
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    price = EXCLUDED.price,
                    category = EXCLUDED.category,
                    sku = EXCLUDED.sku,
                    product_url = EXCLUDED.product_url,
                    variant_attributes = EXCLUDED.variant_attributes,
                    is_active = EXCLUDED.is_active,
                    updated_at = now()
                WHERE catalog_items.tenant_id = EXCLUDED.tenant_id
                RETURNING *
                """,
                (
                    item.id,
                    item.tenant_id,
                    item.name,
                    item.description,
                    item.price,
                    item.category,
                    item.sku,
                    item.product_url,
                    Jsonb(item.variant_attributes),
                    item.is_active,
                ),
            )
            row = cur.fetchone()
        if not row:
            raise CatalogItemNotFoundError(f"Catalog item {item.id} belongs to another tenant")
        return self._row_to_item(row)

    def mark_embedded(
        self,
        tenant_id: UUID,
        item_id: UUID,
        *,
        embedding_text: str,
        embedding_model: str,
        embedded_at: datetime,
    ) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE catalog_items
                SET embedding_text = %s, embedding_model = %s,
                    embedded_at = %s, embed_attempted_at = %s
                WHERE tenant_id = %s AND id = %s
                """,
                (embedding_text, embedding_model, embedded_at, embedded_at, tenant_id, item_id),
            )

    def mark_attempted(
        self, tenant_id: UUID, item_id: UUID, attempted_at: datetime
    ) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE catalog_items SET embed_attempted_at = %s WHERE tenant_id = %s AND id = %s",
                (attempted_at, tenant_id, item_id),
            )

    def mark_all_stale(self, tenant_id: UUID) -> int:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE catalog_items SET embedded_at = NULL, embed_attempted_at = NULL "
                "WHERE tenant_id = %s",
                (tenant_id,),
            )
            return cur.rowcount

    def _row_to_item(self, row: Dict[str, Any]) -> CatalogItem:
        return CatalogItem(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            description=row.get("description") or "",
            price=Decimal(row.get("price") or 0),
            category=row.get("category") or "",
            variant_attributes=_variants(row.get("variant_attributes")),
            is_active=row.get("is_active", True),
            sku=row.get("sku"),
            product_url=row.get("product_url"),
            embedding_text=row.get("embedding_text"),
            embedding_model=row.get("embedding_model"),
            embedded_at=row.get("embedded_at"),
            embed_attempted_at=row.get("embed_attempted_at"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _variants(raw: Any) -> Dict[str, List[str]]:
    if not isinstance(raw, dict):
        return {}
    return {str(name): as_value_list(values) for name, values in raw.items()}


_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def _pending_order(item: CatalogItem) -> tuple[bool, datetime, datetime]:
    attempted = item.embed_attempted_at
    retried = attempted is not None and attempted >= item.updated_at
    return retried, attempted or _NEVER, item.updated_at


class InMemoryCatalogRepository:
    """Process-local catalog store used by tests and local runs."""

    def __init__(self, items: Iterable[CatalogItem] = ()) -> None:
        self._items: Dict[UUID, CatalogItem] = {}
        self._lock = Lock()
        for item in items:
            self._items[item.id] = item

    def get(self, tenant_id: UUID, item_id: UUID) -> Optional[CatalogItem]:
        item = self._items.get(item_id)
        if item is None or item.tenant_id != tenant_id:
            return None
        return item

    def get_many(self, tenant_id: UUID, item_ids: Sequence[UUID]) -> List[CatalogItem]:
        found = (self.get(tenant_id, item_id) for item_id in item_ids)
        return [item for item in found if item is not None]

    def list_pending(
        self, limit: int, tenant_id: Optional[UUID] = None
    ) -> List[CatalogItem]:
        pending = [
            item
            for item in self._items.values()
            if item.is_active
            and item.is_stale
            and (tenant_id is None or item.tenant_id == tenant_id)
        ]
        pending.sort(key=_pending_order)
        return pending[:limit]

    def save(self, item: CatalogItem) -> CatalogItem:
        with self._lock:
            existing = self._items.get(item.id)
            if existing is not None and existing.tenant_id != item.tenant_id:
                raise CatalogItemNotFoundError(
                    f"Catalog item {item.id} belongs to another tenant"
                )
            stored = replace(item, updated_at=datetime.now(timezone.utc))
            if existing is not None:
                stored = replace(
                    stored,
                    created_at=existing.created_at,
                    embedding_text=existing.embedding_text,
                    embedding_model=existing.embedding_model,
                    embedded_at=existing.embedded_at,
                    embed_attempted_at=existing.embed_attempted_at,
                )
            self._items[item.id] = stored
            return stored

    def mark_embedded(
        self,
        tenant_id: UUID,
        item_id: UUID,
        *,
        embedding_text: str,
        embedding_model: str,
        embedded_at: datetime,
    ) -> None:
        with self._lock:
            item = self.get(tenant_id, item_id)
            if item is None:
                return
            self._items[item_id] = replace(
                item,
                embedding_text=embedding_text,
                embedding_model=embedding_model,
                embedded_at=embedded_at,
                embed_attempted_at=embedded_at,
            )

    def mark_attempted(
        self, tenant_id: UUID, item_id: UUID, attempted_at: datetime
    ) -> None:
        with self._lock:
            item = self.get(tenant_id, item_id)
            if item is not None:
                self._items[item_id] = replace(item, embed_attempted_at=attempted_at)

    def mark_all_stale(self, tenant_id: UUID) -> int:
        with self._lock:
            count = 0
            for item_id, item in list(self._items.items()):
                if item.tenant_id == tenant_id:
                    self._items[item_id] = replace(
                        item, embedded_at=None, embed_attempted_at=None
                    )
                    count += 1
            return count
