# fhirrag_sdk/embedding/vector_math.py
# SPDX-License-Identifier: Apache-2.0
"""Text truncation and vector helpers used by the embedding service."""

from __future__ import annotations

import math
from typing import Iterator, List, Sequence, TypeVar

from fhirrag_sdk.core.errors import DimensionMismatch

__all__ = [
    "TRUNCATION_STRATEGIES",
    "ELLIPSIS",
    "truncate_text",
    "normalize_vector",
    "cosine_similarity",
    "chunked",
]

T = TypeVar("T")

TRUNCATION_STRATEGIES = ("start", "end", "middle")
ELLIPSIS = "..."


def truncate_text(text: str, max_length: int, strategy: str = "end") -> str:
    """
    Shorten ``text`` to ``max_length`` characters.

    ``end`` keeps the head, ``start`` keeps the tail, ``middle`` keeps the
    first and last ``max_length // 2`` characters joined by ``"..."``.
    Unknown strategies behave like ``end``.
    """
    if max_length <= 0 or len(text) <= max_length:
        return text
    if strategy == "start":
        return text[len(text) - max_length:]
    if strategy == "middle":
        half = max_length // 2
        if half == 0:
            return text[:max_length]
        return text[:half] + ELLIPSIS + text[-half:]
    return text[:max_length]


def _magnitude(vec: Sequence[float]) -> float:
    return math.sqrt(sum(v * v for v in vec))


def normalize_vector(vec: Sequence[float]) -> List[float]:
    """L2-normalize ``vec``; a zero vector is returned unchanged."""
    norm = _magnitude(vec)
    if norm == 0.0:
        return list(vec)
    return [v / norm for v in vec]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    ``dot(a, b) / (|a| * |b|)``; 0.0 when either magnitude is 0.

    Raises:
        DimensionMismatch: ``len(a) != len(b)``.
    """
    if len(a) != len(b):
        raise DimensionMismatch(
            f"vector dimensions differ: {len(a)} != {len(b)}",
            details={"left": len(a), "right": len(b)},
        )
    mag_a = _magnitude(a)
    mag_b = _magnitude(b)
    if mag_a == 0.0 or mag_b == 0.0:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    # clamp float drift so the result stays in [-1, 1]
    return max(-1.0, min(1.0, dot / (mag_a * mag_b)))


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("size must be >= 1")
    for start in range(0, len(items), size):
        yield items[start:start + size]
