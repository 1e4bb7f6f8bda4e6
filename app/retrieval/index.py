"""Semantic index backends.

The index stores one vector per catalog item and answers "nearest items to
this vector for tenant T, score >= threshold". Scores are cosine similarity,
highest first.
"""

from __future__ import annotations

import itertools
import math
from collections.abc import Sequence
from dataclasses import dataclass
from threading import Lock
from typing import Protocol
from uuid import UUID

import numpy as np
import psycopg


@dataclass(frozen=True)
class IndexHit:
    item_id: UUID
    score: float


class SemanticIndex(Protocol):
    def upsert(self, item_id: UUID, tenant_id: UUID, vector: Sequence[float]) -> None: ...

    def delete(self, item_id: UUID) -> None: ...

    def query(
        self, tenant_id: UUID, vector: Sequence[float], min_score: float, top_k: int
    ) -> list[IndexHit]: ...


class PgVectorIndex:
    """Index backed by the ``catalog_items.embedding`` pgvector column.

    ``<=>`` is pgvector's cosine distance operator, so the similarity score is
    ``1 - distance``. Rows that are inactive or whose vector predates the last
    content change never match.
    """

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def upsert(self, item_id: UUID, tenant_id: UUID, vector: Sequence[float]) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                "UPDATE catalog_items SET embedding = %s WHERE tenant_id = %s AND id = %s",
                (np.asarray(vector, dtype=np.float32), tenant_id, item_id),
            )

    def delete(self, item_id: UUID) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                "UPDATE catalog_items SET embedding = NULL, embedded_at = NULL WHERE id = %s",
                (item_id,),
            )

    def query(
        self, tenant_id: UUID, vector: Sequence[float], min_score: float, top_k: int
    ) -> list[IndexHit]:
        qvec = np.asarray(vector, dtype=np.float32)
        sql = """
        SELECT id, 1 - (embedding <=> %s) AS score
        FROM catalog_items
        WHERE tenant_id = %s
          AND is_active
          AND embedding IS NOT NULL
          AND embedded_at IS NOT NULL
          AND updated_at <= embedded_at
          AND 1 - (embedding <=> %s) >= %s
        ORDER BY embedding <=> %s, updated_at DESC
        LIMIT %s;
        """
        with self._conn.cursor() as cur:
            cur.execute(sql, (qvec, tenant_id, qvec, min_score, qvec, top_k))
            rows = cur.fetchall()
        return [IndexHit(item_id=row[0], score=float(row[1])) for row in rows]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError("vector dimensions differ")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


class InMemoryVectorIndex:
    """Brute-force cosine index kept in process memory.

    Equal scores rank the most recently upserted vector first, matching the
    ``updated_at DESC`` tie-break of :class:`PgVectorIndex`.
    """

    def __init__(self) -> None:
        self._vectors: dict[UUID, tuple[UUID, list[float], int]] = {}
        self._sequence = itertools.count()
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._vectors

    def upsert(self, item_id: UUID, tenant_id: UUID, vector: Sequence[float]) -> None:
        with self._lock:
            self._vectors[item_id] = (
                tenant_id,
                [float(v) for v in vector],
                next(self._sequence),
            )

    def delete(self, item_id: UUID) -> None:
        with self._lock:
            self._vectors.pop(item_id, None)

    def query(
        self, tenant_id: UUID, vector: Sequence[float], min_score: float, top_k: int
    ) -> list[IndexHit]:
        with self._lock:
            entries = list(self._vectors.items())
        ranked = []
        for item_id, (owner, stored, sequence) in entries:
            if owner != tenant_id:
                continue
            score = cosine_similarity(vector, stored)
            if score >= min_score:
                ranked.append((score, sequence, IndexHit(item_id=item_id, score=score)))
        ranked.sort(key=lambda entry: (entry[0], entry[1]), reverse=True)
        return [hit for _, _, hit in ranked[:top_k]]
