# fhirrag_sdk/embedding/vector_index.py
# SPDX-License-Identifier: Apache-2.0
"""
Similarity-search collaborator for :class:`VectorEmbeddingService`.

Real deployments back this with a vector database; the in-memory index is
a brute-force cosine scan partitioned by tenant, suitable for tests and
small corpora.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from fhirrag_sdk.embedding.vector_math import cosine_similarity

__all__ = ["IndexedVector", "VectorIndex", "InMemoryVectorIndex"]


@dataclass
class IndexedVector:
    resource_id: str
    resource_type: str
    embedding: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class VectorIndex(Protocol):
    """Tenant-partitioned vector index."""

    async def upsert(self, tenant_id: str, item: IndexedVector) -> None: ...

    async def query(
        self,
        tenant_id: str,
        vector: Sequence[float],
        *,
        resource_type: Optional[str],
        top_k: int,
        threshold: float,
    ) -> List[Tuple[IndexedVector, float]]: ...


class InMemoryVectorIndex:
    def __init__(self) -> None:
        self._items: Dict[str, Dict[Tuple[str, str], IndexedVector]] = {}

    async def upsert(self, tenant_id: str, item: IndexedVector) -> None:
        self._items.setdefault(tenant_id, {})[(item.resource_type, item.resource_id)] = item

    async def query(
        self,
        tenant_id: str,
        vector: Sequence[float],
        *,
        resource_type: Optional[str],
        top_k: int,
        threshold: float,
    ) -> List[Tuple[IndexedVector, float]]:
        scored: List[Tuple[IndexedVector, float]] = []
        for item in self._items.get(tenant_id, {}).values():
            if resource_type and item.resource_type != resource_type:
                continue
            if len(item.embedding) != len(vector):
                continue
            score = cosine_similarity(vector, item.embedding)
            if score >= threshold:
                scored.append((item, score))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:top_k]

    def count(self, tenant_id: str) -> int:
        return len(self._items.get(tenant_id, {}))
