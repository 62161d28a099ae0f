# fhirrag_sdk/embedding/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""Vector embedding service - public API."""

from fhirrag_sdk.embedding.vector_embedding import (
    EmbeddingData,
    EmbeddingResult,
    SimilarityResult,
    VectorEmbeddingService,
)
from fhirrag_sdk.embedding.vector_index import InMemoryVectorIndex, IndexedVector, VectorIndex
from fhirrag_sdk.embedding.vector_math import cosine_similarity, normalize_vector, truncate_text

__all__ = [
    "EmbeddingData",
    "EmbeddingResult",
    "SimilarityResult",
    "VectorEmbeddingService",
    "InMemoryVectorIndex",
    "IndexedVector",
    "VectorIndex",
    "cosine_similarity",
    "normalize_vector",
    "truncate_text",
]
