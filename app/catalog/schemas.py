"""Pydantic schemas for the catalog API."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class CatalogSearchHit(BaseModel):
    id: UUID
    name: str
    category: str = ""
    price: Decimal
    product_url: str | None = None
    score: float


class CatalogSearchResponse(BaseModel):
    query: str
    items: list[CatalogSearchHit] = Field(default_factory=list)


class CatalogSyncResponse(BaseModel):
    status: str
    marked_stale: int | None = None


class CatalogItemStatus(BaseModel):
    id: UUID
    name: str
    is_active: bool
