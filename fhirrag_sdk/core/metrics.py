# fhirrag_sdk/core/metrics.py
# SPDX-License-Identifier: Apache-2.0
"""Metrics sink protocol and the built-in sinks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol

__all__ = ["MetricsSink", "NoopMetrics", "InMemoryMetrics", "Observation"]


class MetricsSink(Protocol):
    """
    Metrics collection protocol.

    Implementations MUST:
        - Avoid PII.
        - Avoid high-cardinality labels.
        - Hash tenant identifiers when needed.
    """
    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...


class NoopMetrics:
    """No-op metrics sink for tests or minimal deployments."""
    def observe(self, **_: Any) -> None: ...
    def counter(self, **_: Any) -> None: ...


@dataclass
class Observation:
    component: str
    op: str
    ms: float
    ok: bool
    code: str
    extra: Dict[str, Any] = field(default_factory=dict)


class InMemoryMetrics:
    """Collects observations and counters in memory (inspection in tests / CLI)."""

    def __init__(self) -> None:
        self.observations: List[Observation] = []
        self.counters: Dict[str, int] = {}

    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.observations.append(Observation(component, op, ms, ok, code, dict(extra or {})))

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        key = f"{component}.{name}"
        self.counters[key] = self.counters.get(key, 0) + value

    def ops(self, component: Optional[str] = None) -> List[str]:
        return [o.op for o in self.observations if component is None or o.component == component]
