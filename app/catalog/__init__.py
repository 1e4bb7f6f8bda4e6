"""Catalog records, embedding text and background indexing."""

from .indexer import CatalogIndexer
from .models import CatalogItem, IndexReport
from .normalizer import build_embedding_text, normalize_text
from .repository import (
    CatalogRepository,
    InMemoryCatalogRepository,
    PostgresCatalogRepository,
)

__all__ = [
    "CatalogIndexer",
    "CatalogItem",
    "CatalogRepository",
    "InMemoryCatalogRepository",
    "IndexReport",
    "PostgresCatalogRepository",
    "build_embedding_text",
    "normalize_text",
]
