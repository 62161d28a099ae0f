# fhirrag_sdk/telemetry/models.py
# SPDX-License-Identifier: Apache-2.0
"""
Step tracking for one logical operation (a telemetry session).

A :class:`TelemetryContext` owns an ordered list of :class:`TelemetryStep`
records. Facades append one step per public operation when the caller puts
a context on ``OperationContext.telemetry``.

Concurrency
-----------
A context is owned by a single logical session and is not designed for
concurrent writers. Callers that record steps from concurrent tasks must
serialize those writes themselves.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

__all__ = [
    "TelemetryStepStatus",
    "TelemetryStep",
    "TelemetryContext",
    "TelemetryMetrics",
]

_ZERO = timedelta(0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TelemetryStepStatus(str, Enum):
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass
class TelemetryStep:
    """
    One named step of a session.

    ``completed_at`` is ``None`` iff the step is in progress. A step moves
    from InProgress to Completed or Failed exactly once; later calls to
    :meth:`complete` are no-ops.
    """

    name: str = ""
    description: str = ""
    session_id: str = ""
    status: TelemetryStepStatus = TelemetryStepStatus.IN_PROGRESS
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_in_progress(self) -> bool:
        return self.status is TelemetryStepStatus.IN_PROGRESS

    @property
    def duration(self) -> timedelta:
        if self.completed_at is None:
            return _ZERO
        return self.completed_at - self.started_at

    def complete(self, success: bool = True, error_message: Optional[str] = None) -> None:
        if not self.is_in_progress:
            return
        self.completed_at = _utcnow()
        if success:
            self.status = TelemetryStepStatus.COMPLETED
        else:
            self.status = TelemetryStepStatus.FAILED
            self.error_message = error_message

    def add_data(self, key: str, value: Any) -> None:
        self.data[key] = value

    def get_data(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "session_id": self.session_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": int(self.duration.total_seconds() * 1000),
            "error_message": self.error_message,
            "data": dict(self.data),
        }


@dataclass
class TelemetryMetrics:
    """Aggregates derived from a session's steps."""

    session_id: str = ""
    resource_type: str = ""
    resource_id: str = ""
    total_steps: int = 0
    successful_steps: int = 0
    failed_steps: int = 0
    total_duration: timedelta = _ZERO
    average_step_duration: timedelta = _ZERO

    @property
    def success_rate(self) -> float:
        if self.total_steps == 0:
            return 0.0
        return self.successful_steps / self.total_steps

    def get_performance_rating(self) -> int:
        """
        Five-tier rating (0 to 5 stars).

        0 is reserved for a session with no steps. 5 requires a success rate
        of at least 95% and an average step no longer than 30 seconds.
        """
        if self.total_steps == 0:
            return 0
        rate = self.success_rate
        if rate >= 0.95 and self.average_step_duration <= timedelta(seconds=30):
            return 5
        if rate >= 0.9:
            return 4
        if rate >= 0.8:
            return 3
        if rate >= 0.5:
            return 2
        return 1


@dataclass
class TelemetryContext:
    """Ordered step record for one session (one resource being processed)."""

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str = ""
    user_id: str = ""
    resource_type: str = ""
    resource_id: str = ""
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    steps: List[TelemetryStep] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    enable_s3_storage: bool = True

    def start_step(self, name: str, description: Optional[str] = None) -> TelemetryStep:
        step = TelemetryStep(
            name=name,
            description=description or name,
            session_id=self.session_id,
        )
        self.steps.append(step)
        return step

    def get_step(self, name: str) -> Optional[TelemetryStep]:
        for step in reversed(self.steps):
            if step.name == name:
                return step
        return None

    def complete(self, success: bool = True, error_message: Optional[str] = None) -> None:
        """Close the session, forcing every in-progress step to a terminal state."""
        for step in self.steps:
            if step.is_in_progress:
                step.complete(success, error_message)
        if self.completed_at is None:
            self.completed_at = _utcnow()

    def get_total_duration(self) -> timedelta:
        """Span from the earliest start to the latest finish of the finished steps."""
        finished = [s for s in self.steps if s.completed_at is not None]
        if not finished:
            return _ZERO
        return max(s.completed_at for s in finished) - min(s.started_at for s in finished)

    def get_metrics(self) -> TelemetryMetrics:
        finished = [s for s in self.steps if not s.is_in_progress]
        total = sum((s.duration for s in finished), _ZERO)
        successful = sum(1 for s in self.steps if s.status is TelemetryStepStatus.COMPLETED)
        failed = sum(1 for s in self.steps if s.status is TelemetryStepStatus.FAILED)
        return TelemetryMetrics(
            session_id=self.session_id,
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            total_steps=len(self.steps),
            successful_steps=successful,
            failed_steps=failed,
            total_duration=total,
            average_step_duration=(total / len(finished)) if finished else _ZERO,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe snapshot. The raw tenant id is included; persist it only tenant-scoped."""
        metrics = self.get_metrics()
        return {
            "session_id": self.session_id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "steps": [s.to_dict() for s in self.steps],
            "metadata": dict(self.metadata),
            "metrics": {
                "total_steps": metrics.total_steps,
                "successful_steps": metrics.successful_steps,
                "failed_steps": metrics.failed_steps,
                "success_rate": metrics.success_rate,
                "total_duration_ms": int(metrics.total_duration.total_seconds() * 1000),
                "performance_rating": metrics.get_performance_rating(),
            },
        }
