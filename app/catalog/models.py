"""Catalog domain records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CatalogItem:
    """A sellable item as stored for one tenant.

    ``updated_at`` is the content version: any change to the fields that feed
    the embedding text must advance it. ``embedded_at`` records when the
    current vector was computed, so an item is stale whenever its content
    changed after that point. ``embed_attempted_at`` records the last sync
    attempt of any outcome; items already attempted at their current version
    queue behind never-attempted ones.
    """

    tenant_id: UUID
    name: str
    description: str = ""
    price: Decimal = Decimal("0")
    category: str = ""
    variant_attributes: dict[str, list[str]] = field(default_factory=dict)
    is_active: bool = True
    sku: str | None = None
    product_url: str | None = None
    embedding_text: str | None = None
    embedding_model: str | None = None
    embedded_at: datetime | None = None
    embed_attempted_at: datetime | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_stale(self) -> bool:
        return self.embedded_at is None or self.updated_at > self.embedded_at


@dataclass
class IndexReport:
    """Counters returned by a catalog sync pass."""

    embedded: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def processed(self) -> int:
        return self.embedded + self.failed + self.skipped
