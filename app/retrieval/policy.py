"""Semantic retrieval policy for catalog items.

Two modes share the same embedding step but use different thresholds:

``RECOMMENDATION``
    Used inline while answering a customer. Permissive threshold and a small
    ``top_k``: a missed recommendation costs more than an occasional loose
    match.
``EXACT``
    Used for explicit lookups. Conservative threshold, optimised for
    precision.

Anything under the threshold is dropped; there is no "closest match"
fallback. Only the current customer message is embedded, never the turn
history.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from uuid import UUID

from ..catalog.models import CatalogItem
from ..catalog.repository import CatalogRepository
from ..embeddings import EmbeddingService
from ..settings import Settings, get_settings
from .index import SemanticIndex

logger = logging.getLogger(__name__)


class RetrievalMode(str, enum.Enum):
    RECOMMENDATION = "recommendation"
    EXACT = "exact"


@dataclass(frozen=True)
class ModeThresholds:
    min_score: float
    top_k: int


DEFAULT_THRESHOLDS: dict[RetrievalMode, ModeThresholds] = {
    RetrievalMode.RECOMMENDATION: ModeThresholds(min_score=0.35, top_k=5),
    RetrievalMode.EXACT: ModeThresholds(min_score=0.70, top_k=10),
}


def thresholds_from_settings(settings: Settings | None = None) -> dict[RetrievalMode, ModeThresholds]:
    settings = settings or get_settings()
    return {
        RetrievalMode.RECOMMENDATION: ModeThresholds(
            min_score=settings.recommendation_min_score,
            top_k=settings.recommendation_top_k,
        ),
        RetrievalMode.EXACT: ModeThresholds(
            min_score=settings.exact_search_min_score,
            top_k=settings.exact_search_top_k,
        ),
    }


@dataclass(frozen=True)
class RetrievalQuery:
    tenant_id: UUID
    text: str
    top_k: int
    min_score: float


@dataclass(frozen=True)
class RetrievedItem:
    item: CatalogItem
    score: float


class RetrievalPolicy:
    """Turn customer text into a ranked, tenant-scoped list of catalog items."""

    def __init__(
        self,
        repository: CatalogRepository,
        index: SemanticIndex,
        embedder: EmbeddingService,
        *,
        thresholds: dict[RetrievalMode, ModeThresholds] | None = None,
    ) -> None:
        self._repository = repository
        self._index = index
        self._embedder = embedder
        self._thresholds = dict(DEFAULT_THRESHOLDS)
        if thresholds:
            self._thresholds.update(thresholds)

    def thresholds(self, mode: RetrievalMode) -> ModeThresholds:
        return self._thresholds[mode]

    def build_query(
        self, tenant_id: UUID, text: str, mode: RetrievalMode = RetrievalMode.RECOMMENDATION
    ) -> RetrievalQuery:
        limits = self._thresholds[mode]
        return RetrievalQuery(
            tenant_id=tenant_id,
            text=(text or "").strip(),
            top_k=limits.top_k,
            min_score=limits.min_score,
        )

    def retrieve(self, query: RetrievalQuery) -> list[RetrievedItem]:
        """Run ``query`` against the index and re-validate every candidate.

        Raises :class:`app.embeddings.EmbeddingError` when the query cannot be
        embedded; callers decide whether that is fatal.
        """

        if not query.text or query.top_k <= 0:
            return []
        vector = self._embedder.embed(query.text)
        # Ask for headroom so stale or inactive rows dropped below do not
        # starve the final list.
        candidate_k = max(query.top_k * 4, 20)
        hits = self._index.query(query.tenant_id, vector, query.min_score, candidate_k)
        if not hits:
            return []
        scores = {hit.item_id: hit.score for hit in hits}
        items = self._repository.get_many(query.tenant_id, list(scores))
        results = [
            RetrievedItem(item=item, score=scores[item.id])
            for item in items
            if item.tenant_id == query.tenant_id
            and item.is_active
            and not item.is_stale
            and scores[item.id] >= query.min_score
        ]
        results.sort(key=lambda result: (result.score, result.item.updated_at), reverse=True)
        logger.debug(
            "Retrieved %d/%d candidates for tenant %s", len(results), len(hits), query.tenant_id
        )
        return results[: query.top_k]

    def recommend(self, tenant_id: UUID, message_text: str) -> list[RetrievedItem]:
        return self.retrieve(self.build_query(tenant_id, message_text, RetrievalMode.RECOMMENDATION))

    def search(self, tenant_id: UUID, text: str) -> list[RetrievedItem]:
        return self.retrieve(self.build_query(tenant_id, text, RetrievalMode.EXACT))
