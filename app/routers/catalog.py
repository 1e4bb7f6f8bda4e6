"""Catalog search and embedding sync routes."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from ..catalog import schemas as catalog_schemas
from ..catalog.repository import CatalogItemNotFoundError
from ..core.auth import OperatorIdentity, require_role
from ..core.db import get_conn, get_required_tenant_id
from ..embeddings import EmbeddingError
from ..runtime import Components, postgres_components, run_catalog_sync

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/catalog", tags=["catalog"])


@contextmanager
def _service_context() -> Iterator[tuple[UUID, Components]]:
    try:
        tenant_id = get_required_tenant_id()
    except RuntimeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        conn = get_conn(autocommit=True)
    except Exception as exc:  # pragma: no cover - depends on the database
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    try:
        yield tenant_id, postgres_components(conn)
    except EmbeddingError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    finally:
        conn.close()


def _sync_tenant(tenant_id: UUID) -> None:
    try:
        report = run_catalog_sync(tenant_id)
    except Exception:
        logger.exception("Catalog sync failed for tenant %s", tenant_id)
        return
    logger.info("Catalog sync for tenant %s processed %d items", tenant_id, report.processed)


@router.get("/search", response_model=catalog_schemas.CatalogSearchResponse)
def search_catalog(q: str = "") -> catalog_schemas.CatalogSearchResponse:
    """Exact-search mode: stricter threshold, wider result list."""

    with _service_context() as (tenant_id, components):
        results = components.retrieval.search(tenant_id, q)
    return catalog_schemas.CatalogSearchResponse(
        query=q,
        items=[
            catalog_schemas.CatalogSearchHit(
                id=result.item.id,
                name=result.item.name,
                category=result.item.category,
                price=result.item.price,
                product_url=result.item.product_url,
                score=result.score,
            )
            for result in results
        ],
    )


@router.post("/sync", status_code=202, response_model=catalog_schemas.CatalogSyncResponse)
def sync_catalog(background_tasks: BackgroundTasks) -> catalog_schemas.CatalogSyncResponse:
    try:
        tenant_id = get_required_tenant_id()
    except RuntimeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    background_tasks.add_task(_sync_tenant, tenant_id)
    return catalog_schemas.CatalogSyncResponse(status="scheduled")


@router.post("/resync", response_model=catalog_schemas.CatalogSyncResponse)
def resync_catalog(background_tasks: BackgroundTasks) -> catalog_schemas.CatalogSyncResponse:
    """Mark every item stale and schedule a sync pass to re-embed them."""

    with _service_context() as (tenant_id, components):
        count = components.indexer.force_resync(tenant_id)
    background_tasks.add_task(_sync_tenant, tenant_id)
    return catalog_schemas.CatalogSyncResponse(status="scheduled", marked_stale=count)


@router.post("/items/{item_id}/deactivate", response_model=catalog_schemas.CatalogItemStatus)
def deactivate_item(
    item_id: UUID, identity: OperatorIdentity = Depends(require_role("operator"))
) -> catalog_schemas.CatalogItemStatus:
    """Take an item off sale; it stops matching immediately."""

    try:
        conn = get_conn(autocommit=True)
    except Exception as exc:  # pragma: no cover - depends on the database
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    try:
        item = postgres_components(conn).indexer.deactivate_item(identity.tenant_id, item_id)
    except CatalogItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    finally:
        conn.close()
    return catalog_schemas.CatalogItemStatus(id=item.id, name=item.name, is_active=item.is_active)
