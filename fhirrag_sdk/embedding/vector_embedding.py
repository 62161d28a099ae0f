# fhirrag_sdk/embedding/vector_embedding.py
# SPDX-License-Identifier: Apache-2.0
"""
Vector embedding service: preprocessing, batching and persistence on top of
an embedding backend (normally :class:`BedrockLlmService`).

Pipeline for one text
---------------------
    authorize -> validate -> truncate (start | end | middle) -> backend embed
              -> L2-normalize (optional)

Batches
-------
Inputs are split into fixed-size batches. Items within a batch run
concurrently, each bounded by ``batch_timeout_s``; a pacing delay is
inserted *between* batches only. A failed or timed-out item yields an
:class:`EmbeddingResult` with ``is_success=False`` and an error string; only
cancellation aborts the whole run. Results keep input order.

The single-text operations return a bare vector, so a backend response that
declined the request is escalated with ``raise_for_error()``.

Persistence and search
----------------------
Embeddings are stored as JSON through the tenant-scoped storage facade under
``embeddings/{resource_type}/{resource_id}``. Similarity search delegates to
a :class:`VectorIndex` collaborator; without one, ``find_similar`` raises
:class:`NotSupported`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from fhirrag_sdk.config import VectorEmbeddingConfig
from fhirrag_sdk.core.cancellation import Sleeper
from fhirrag_sdk.core.context import OperationContext
from fhirrag_sdk.core.errors import Cancelled, InvalidArgument, NotSupported
from fhirrag_sdk.core.facade import BaseRemoteFacade, require_text
from fhirrag_sdk.core.metrics import MetricsSink
from fhirrag_sdk.core.security import SecurityContext
from fhirrag_sdk.embedding.vector_index import IndexedVector, VectorIndex
from fhirrag_sdk.embedding.vector_math import (
    chunked,
    cosine_similarity,
    normalize_vector,
    truncate_text,
)
from fhirrag_sdk.llm.bedrock import EmbeddingResponse
from fhirrag_sdk.storage.aws_storage import AwsStorageService

__all__ = [
    "EmbeddingBackend",
    "EmbeddingResult",
    "SimilarityResult",
    "EmbeddingData",
    "VectorEmbeddingService",
    "embedding_storage_key",
]

LOG = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def embedding_storage_key(resource_type: str, resource_id: str) -> str:
    return f"embeddings/{resource_type}/{resource_id}"


class EmbeddingBackend(Protocol):
    async def generate_embedding(
        self,
        text: str,
        *,
        ctx: OperationContext,
        model_id: Optional[str] = None,
        dimensions: Optional[int] = None,
    ) -> EmbeddingResponse: ...


@dataclass
class EmbeddingResult:
    text: str = ""
    embedding: List[float] = field(default_factory=list)
    is_success: bool = False
    dimensions: int = 0
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SimilarityResult:
    resource_id: str = ""
    resource_type: str = ""
    similarity_score: float = 0.0
    embedding: List[float] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None


@dataclass
class EmbeddingData:
    """Persisted form of one resource embedding."""

    resource_id: str
    resource_type: str
    tenant_id: str
    embedding: List[float]
    dimensions: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_json(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "tenant_id": self.tenant_id,
            "embedding": list(self.embedding),
            "dimensions": self.dimensions,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "EmbeddingData":
        return cls(
            resource_id=str(raw["resource_id"]),
            resource_type=str(raw.get("resource_type", "")),
            tenant_id=str(raw.get("tenant_id", "")),
            embedding=[float(x) for x in raw.get("embedding", [])],
            dimensions=int(raw.get("dimensions", 0)),
            metadata=dict(raw.get("metadata") or {}),
            created_at=datetime.fromisoformat(raw["created_at"]) if raw.get("created_at") else _utcnow(),
            updated_at=datetime.fromisoformat(raw["updated_at"]) if raw.get("updated_at") else _utcnow(),
        )


class VectorEmbeddingService(BaseRemoteFacade):
    """Embedding generation, batching, similarity and persistence."""

    _component = "vector_embedding"

    def __init__(
        self,
        backend: EmbeddingBackend,
        storage: Optional[AwsStorageService] = None,
        config: Optional[VectorEmbeddingConfig] = None,
        *,
        index: Optional[VectorIndex] = None,
        metrics: Optional[MetricsSink] = None,
        sleeper: Sleeper = asyncio.sleep,
    ) -> None:
        super().__init__(metrics=metrics)
        self._backend = backend
        self._storage = storage
        self._config = config or VectorEmbeddingConfig()
        self._index = index
        self._sleeper = sleeper

    @property
    def config(self) -> VectorEmbeddingConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Preprocessing
    # ------------------------------------------------------------------ #

    def preprocess(self, text: str) -> str:
        cfg = self._config
        if len(text) > cfg.max_text_length:
            LOG.debug(
                "truncating text from %d to %d chars (%s)",
                len(text),
                cfg.max_text_length,
                cfg.text_truncation_strategy,
            )
        return truncate_text(text, cfg.max_text_length, cfg.text_truncation_strategy)

    async def _embed(self, text: str, ctx: OperationContext) -> List[float]:
        response = await self._backend.generate_embedding(
            self.preprocess(text),
            ctx=ctx,
            model_id=self._config.embedding_model,
            dimensions=self._config.dimensions,
        )
        vector = response.raise_for_error().embedding
        if self._config.normalize_vectors:
            vector = normalize_vector(vector)
        return list(vector)

    @staticmethod
    def _structured_text(structured: Mapping[str, Any]) -> str:
        if not structured:
            raise InvalidArgument("structured data must be a non-empty mapping", field="structured_data")
        return json.dumps(structured, indent=2, default=str)

    # ------------------------------------------------------------------ #
    # Generation
    # ------------------------------------------------------------------ #

    async def generate_text_embedding(self, text: str, *, ctx: OperationContext) -> List[float]:
        async def _call(security: SecurityContext) -> List[float]:
            require_text("text", text)
            return await self._embed(text, ctx.with_updates(telemetry=None))

        return await self._run_operation("generate_text_embedding", ctx, _call)

    async def generate_structured_embedding(
        self,
        structured_data: Mapping[str, Any],
        *,
        ctx: OperationContext,
    ) -> List[float]:
        """Embed the indented JSON rendering of ``structured_data``."""

        async def _call(security: SecurityContext) -> List[float]:
            return await self._embed(self._structured_text(structured_data), ctx.with_updates(telemetry=None))

        return await self._run_operation("generate_structured_embedding", ctx, _call)

    async def generate_multimodal_embedding(
        self,
        text: str,
        structured_data: Mapping[str, Any],
        *,
        ctx: OperationContext,
    ) -> List[float]:
        async def _call(security: SecurityContext) -> List[float]:
            require_text("text", text)
            combined = f"Text: {text}\n\nStructured Data:\n{self._structured_text(structured_data)}"
            return await self._embed(combined, ctx.with_updates(telemetry=None))

        return await self._run_operation("generate_multimodal_embedding", ctx, _call)

    @staticmethod
    def calculate_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)

    async def generate_batch_embeddings(
        self,
        texts: Sequence[str],
        *,
        ctx: OperationContext,
    ) -> List[EmbeddingResult]:
        """
        Embed ``texts`` in batches of ``config.batch_size``.

        Raises:
            InvalidArgument: ``texts`` is empty.
            Cancelled: the token fired before a batch or during pacing.
        """

        timeout_s = self._config.batch_timeout_s

        async def _one(text: str, item_ctx: OperationContext) -> EmbeddingResult:
            try:
                if not text or not text.strip():
                    raise InvalidArgument("text must be a non-empty string", field="text")
                vector = await asyncio.wait_for(self._embed(text, item_ctx), timeout=timeout_s)
            except Cancelled:
                raise
            except asyncio.TimeoutError:
                return EmbeddingResult(
                    text=text,
                    is_success=False,
                    error_message=f"embedding timed out after {timeout_s:g}s",
                )
            except Exception as e:  # per-item failure is reported, not raised
                return EmbeddingResult(text=text, is_success=False, error_message=str(e) or type(e).__name__)
            return EmbeddingResult(text=text, embedding=vector, is_success=True, dimensions=len(vector))

        async def _call(security: SecurityContext) -> List[EmbeddingResult]:
            if not texts:
                raise InvalidArgument("texts must be a non-empty sequence", field="texts")
            item_ctx = ctx.with_updates(telemetry=None)
            token = ctx.cancellation
            results: List[EmbeddingResult] = []

            for n, batch in enumerate(chunked(list(texts), self._config.batch_size)):
                if n > 0 and self._config.batch_pacing_s > 0:
                    if token is not None:
                        await token.sleep(self._config.batch_pacing_s, sleeper=self._sleeper)
                    else:
                        await self._sleeper(self._config.batch_pacing_s)
                if token is not None:
                    token.raise_if_cancelled()
                results.extend(await asyncio.gather(*(_one(t, item_ctx) for t in batch)))

            ok = sum(1 for r in results if r.is_success)
            LOG.info(
                "batch embeddings: %d succeeded, %d failed",
                ok,
                len(results) - ok,
                extra={"tenant": security.tenant_hash()},
            )
            return results

        return await self._run_operation(
            "generate_batch_embeddings",
            ctx,
            _call,
            metric_extra={"count": len(texts or ())},
        )

    # ------------------------------------------------------------------ #
    # Persistence and search
    # ------------------------------------------------------------------ #

    def _require_storage(self) -> AwsStorageService:
        if self._storage is None:
            raise NotSupported("embedding storage is not configured")
        return self._storage

    async def store_embedding(
        self,
        resource_id: str,
        resource_type: str,
        embedding: Sequence[float],
        *,
        ctx: OperationContext,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        async def _call(security: SecurityContext) -> bool:
            require_text("resource_id", resource_id)
            require_text("resource_type", resource_type)
            if not embedding:
                raise InvalidArgument("embedding must be non-empty", field="embedding")
            storage = self._require_storage()

            data = EmbeddingData(
                resource_id=resource_id,
                resource_type=resource_type,
                tenant_id=security.tenant_id,
                embedding=[float(x) for x in embedding],
                dimensions=len(embedding),
                metadata=dict(metadata or {}),
            )
            inner = ctx.with_updates(telemetry=None)
            await storage.store_json(embedding_storage_key(resource_type, resource_id), data.to_json(), ctx=inner)
            if self._index is not None:
                await self._index.upsert(
                    security.tenant_id,
                    IndexedVector(
                        resource_id=resource_id,
                        resource_type=resource_type,
                        embedding=data.embedding,
                        metadata=data.metadata,
                        created_at=data.created_at,
                    ),
                )
            return True

        return await self._run_operation("store_embedding", ctx, _call)

    async def get_embedding(
        self,
        resource_id: str,
        resource_type: str,
        *,
        ctx: OperationContext,
    ) -> Optional[List[float]]:
        async def _call(security: SecurityContext) -> Optional[List[float]]:
            require_text("resource_id", resource_id)
            require_text("resource_type", resource_type)
            raw = await self._require_storage().retrieve_json(
                embedding_storage_key(resource_type, resource_id),
                ctx=ctx.with_updates(telemetry=None),
            )
            if raw is None:
                return None
            return EmbeddingData.from_json(raw).embedding

        return await self._run_operation("get_embedding", ctx, _call)

    async def find_similar(
        self,
        query_embedding: Sequence[float],
        resource_type: Optional[str] = None,
        *,
        ctx: OperationContext,
        top_k: int = 10,
        threshold: float = 0.7,
    ) -> List[SimilarityResult]:
        """Nearest stored embeddings for the caller's tenant, best first."""

        async def _call(security: SecurityContext) -> List[SimilarityResult]:
            if not query_embedding:
                raise InvalidArgument("query embedding must be non-empty", field="query_embedding")
            if top_k < 1:
                raise InvalidArgument("top_k must be >= 1", field="top_k")
            if not -1.0 <= threshold <= 1.0:
                raise InvalidArgument("threshold must be within [-1.0, 1.0]", field="threshold")
            if self._index is None:
                raise NotSupported("similarity search requires a vector index")

            query = list(query_embedding)
            if self._config.normalize_vectors:
                query = normalize_vector(query)
            hits = await self._index.query(
                security.tenant_id,
                query,
                resource_type=resource_type,
                top_k=top_k,
                threshold=threshold,
            )
            return [
                SimilarityResult(
                    resource_id=item.resource_id,
                    resource_type=item.resource_type,
                    similarity_score=score,
                    embedding=list(item.embedding),
                    metadata=dict(item.metadata),
                    created_at=item.created_at,
                )
                for item, score in hits
            ]

        return await self._run_operation("find_similar", ctx, _call, metric_extra={"top_k": top_k})
