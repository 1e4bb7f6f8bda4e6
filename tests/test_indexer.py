from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest

from app.catalog.indexer import CatalogIndexer
from app.catalog.repository import CatalogItemNotFoundError, InMemoryCatalogRepository
from app.embeddings import EmbeddingError
from app.retrieval.index import InMemoryVectorIndex

from conftest import ConceptEmbedder, FailingEmbedder, demo_items, make_item


def _indexer(embedder=None):
    repository = InMemoryCatalogRepository()
    index = InMemoryVectorIndex()
    return repository, index, CatalogIndexer(repository, index, embedder or ConceptEmbedder())


def test_sync_pending_embeds_new_items(tenant_id):
    repository, index, indexer = _indexer()
    for item in demo_items(tenant_id):
        repository.save(item)

    report = indexer.sync_pending(limit=10, batch_size=2)

    assert report.embedded == 3
    assert report.processed == 3
    assert len(index) == 3
    assert repository.list_pending(10) == []


def test_embedding_records_text_and_model(tenant_id):
    repository, _, indexer = _indexer()
    item = repository.save(make_item(tenant_id, "Dad Hat"))

    assert indexer.index_item(item) == "embedded"

    stored = repository.get(tenant_id, item.id)
    assert stored.embedding_model == "test-concepts"
    assert stored.embedding_text.startswith("Product: Dad Hat")
    assert not stored.is_stale


def test_failed_embedding_leaves_item_pending(tenant_id):
    repository, index, indexer = _indexer(FailingEmbedder())
    repository.save(make_item(tenant_id, "Dad Hat"))

    report = indexer.sync_pending()

    assert report.failed == 1
    assert len(index) == 0
    assert len(repository.list_pending(10)) == 1


def test_items_without_content_are_skipped(tenant_id):
    repository, index, indexer = _indexer()
    repository.save(make_item(tenant_id, "<br>", price=0))

    report = indexer.sync_pending()

    assert report.skipped == 1
    assert len(index) == 0


def test_content_change_during_embedding_keeps_item_stale(tenant_id):
    repository, _, indexer = _indexer()
    item = repository.save(make_item(tenant_id, "Dad Hat"))

    class EditingEmbedder(ConceptEmbedder):
        def embed(self, text):
            vector = super().embed(text)
            current = repository.get(tenant_id, item.id)
            repository.save(replace(current, description="Now in corduroy"))
            return vector

    indexer = CatalogIndexer(repository, InMemoryVectorIndex(), EditingEmbedder())
    indexer.index_item(item)

    assert repository.get(tenant_id, item.id).is_stale


def test_force_resync_marks_only_that_tenant_stale(tenant_id):
    repository, _, indexer = _indexer()
    for item in demo_items(tenant_id):
        repository.save(item)
    other = repository.save(make_item(uuid4(), "Other Tenant Hat"))
    indexer.sync_pending()

    assert indexer.force_resync(tenant_id) == 3
    assert len(repository.list_pending(10, tenant_id=tenant_id)) == 3
    assert not repository.get(other.tenant_id, other.id).is_stale


def test_stale_when_updated_after_embedding(tenant_id):
    item = make_item(tenant_id, "Dad Hat")
    item.embedded_at = item.updated_at
    assert not item.is_stale
    item.updated_at = item.updated_at + timedelta(seconds=1)
    assert item.is_stale


def test_contentless_items_do_not_starve_the_queue(tenant_id):
    repository, index, indexer = _indexer()
    for _ in range(3):
        repository.save(make_item(tenant_id, "***", price=0))
    hat = repository.save(make_item(tenant_id, "Dad Hat"))

    first = indexer.sync_pending(limit=3)
    second = indexer.sync_pending(limit=3)

    assert first.skipped == 3
    assert second.embedded == 1
    assert not repository.get(tenant_id, hat.id).is_stale
    assert hat.id in index


def test_failing_items_rotate_behind_other_tenants(tenant_id):
    class PickyEmbedder(ConceptEmbedder):
        def embed(self, text):
            if "Broken" in text:
                raise EmbeddingError("model rejected input")
            return super().embed(text)

    repository, _, indexer = _indexer(PickyEmbedder())
    for number in range(4):
        repository.save(make_item(tenant_id, f"Broken Widget {number}"))
    other = repository.save(make_item(uuid4(), "Camp Mug"))

    reports = [indexer.sync_pending(limit=2) for _ in range(3)]

    assert sum(report.failed for report in reports) >= 4
    assert not repository.get(other.tenant_id, other.id).is_stale


def test_edited_item_jumps_ahead_of_retried_ones(tenant_id):
    repository, _, indexer = _indexer(FailingEmbedder())
    stuck = repository.save(make_item(tenant_id, "Bucket Hat"))
    edited = repository.save(make_item(tenant_id, "Dad Hat"))
    indexer.sync_pending()

    repository.save(replace(repository.get(tenant_id, edited.id), description="Now in wool"))

    assert [item.id for item in repository.list_pending(2)] == [edited.id, stuck.id]


def test_deactivate_item_drops_its_vector(tenant_id):
    repository, index, indexer = _indexer()
    hat = repository.save(make_item(tenant_id, "Dad Hat"))
    indexer.sync_pending()
    assert hat.id in index

    stored = indexer.deactivate_item(tenant_id, hat.id)

    assert not stored.is_active
    assert hat.id not in index
    assert repository.list_pending(10) == []


def test_deactivate_item_is_tenant_scoped(tenant_id):
    repository, _, indexer = _indexer()
    hat = repository.save(make_item(tenant_id, "Dad Hat"))

    with pytest.raises(CatalogItemNotFoundError):
        indexer.deactivate_item(uuid4(), hat.id)
    assert repository.get(tenant_id, hat.id).is_active
