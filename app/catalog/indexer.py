"""Background indexing of catalog items into the semantic index."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from uuid import UUID

from ..embeddings import EmbeddingError, EmbeddingService
from ..retrieval.index import SemanticIndex
from .models import CatalogItem, IndexReport
from .normalizer import build_embedding_text
from .repository import CatalogItemNotFoundError, CatalogRepository

logger = logging.getLogger(__name__)

DEFAULT_SYNC_LIMIT = 100
DEFAULT_BATCH_SIZE = 10


class CatalogIndexer:
    """Embed stale or never-embedded catalog items.

    The indexer is meant to run off the request path (see
    :class:`app.core.scheduler.PeriodicRunner`). Embedding failures leave the
    item stale so the next pass retries it; the previous vector, if any, stays
    in the index until a new one replaces it. Every attempt is recorded, so
    items that keep failing or have nothing to embed rotate to the back of the
    queue instead of filling every pass.
    """

    def __init__(
        self,
        repository: CatalogRepository,
        index: SemanticIndex,
        embedder: EmbeddingService,
    ) -> None:
        self._repository = repository
        self._index = index
        self._embedder = embedder

    def index_item(self, item: CatalogItem) -> str:
        """Embed a single item. Returns ``"embedded"``, ``"skipped"`` or ``"failed"``."""

        started_at = datetime.now(timezone.utc)
        text = build_embedding_text(item)
        if not text:
            logger.debug("Catalog item %s has no embeddable content", item.id)
            self._repository.mark_attempted(item.tenant_id, item.id, started_at)
            return "skipped"
        try:
            vector = self._embedder.embed(text)
        except EmbeddingError as exc:
            logger.warning("Embedding failed for catalog item %s: %s", item.id, exc)
            self._repository.mark_attempted(item.tenant_id, item.id, started_at)
            return "failed"
        self._index.upsert(item.id, item.tenant_id, vector)
        # A content change that lands while the embedding call is in flight
        # keeps updated_at ahead of started_at, so the item stays stale.
        self._repository.mark_embedded(
            item.tenant_id,
            item.id,
            embedding_text=text,
            embedding_model=getattr(self._embedder, "model_name", "unknown"),
            embedded_at=started_at,
        )
        return "embedded"

    def sync_pending(
        self,
        limit: int = DEFAULT_SYNC_LIMIT,
        batch_size: int = DEFAULT_BATCH_SIZE,
        tenant_id: UUID | None = None,
    ) -> IndexReport:
        """Embed up to ``limit`` pending items in batches of ``batch_size``."""

        report = IndexReport()
        pending = self._repository.list_pending(limit, tenant_id=tenant_id)
        if not pending:
            logger.debug("No catalog items pending embedding")
            return report
        logger.info("Embedding %d pending catalog items", len(pending))
        for start in range(0, len(pending), batch_size):
            batch = pending[start : start + batch_size]
            for item in batch:
                outcome = self.index_item(item)
                setattr(report, outcome, getattr(report, outcome) + 1)
            logger.debug(
                "Catalog batch %d-%d done", start + 1, start + len(batch)
            )
        logger.info(
            "Catalog sync finished: %d embedded, %d failed, %d skipped",
            report.embedded,
            report.failed,
            report.skipped,
        )
        return report

    def force_resync(self, tenant_id: UUID) -> int:
        """Mark every item of ``tenant_id`` stale so the next pass re-embeds it."""

        count = self._repository.mark_all_stale(tenant_id)
        logger.info("Marked %d catalog items stale for tenant %s", count, tenant_id)
        return count

    def deactivate_item(self, tenant_id: UUID, item_id: UUID) -> CatalogItem:
        """Take an item off sale and drop its vector from the index.

        Inactive items are never queued for embedding, so reactivating one
        (saving it with ``is_active=True``) embeds it again on the next pass.
        """

        item = self._repository.get(tenant_id, item_id)
        if item is None:
            raise CatalogItemNotFoundError(f"Catalog item {item_id} not found")
        stored = item
        if item.is_active:
            stored = self._repository.save(replace(item, is_active=False))
        self._index.delete(item.id)
        logger.info("Deactivated catalog item %s for tenant %s", item_id, tenant_id)
        return stored
