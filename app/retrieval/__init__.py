"""Semantic index backends and the retrieval policy."""

from .index import IndexHit, InMemoryVectorIndex, PgVectorIndex, SemanticIndex
from .policy import (
    RetrievalMode,
    RetrievalPolicy,
    RetrievalQuery,
    RetrievedItem,
)

__all__ = [
    "IndexHit",
    "InMemoryVectorIndex",
    "PgVectorIndex",
    "RetrievalMode",
    "RetrievalPolicy",
    "RetrievalQuery",
    "RetrievedItem",
    "SemanticIndex",
]
