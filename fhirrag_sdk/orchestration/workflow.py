# fhirrag_sdk/orchestration/workflow.py
# SPDX-License-Identifier: Apache-2.0
"""
Workflow state model and durable state stores.

State machine
-------------
    initiated -> running -> {completed, failed, cancelled}

``initiated`` is written only after the first step is enqueued. ``running``
and the terminal states are reported by external workers through
:meth:`WorkflowStateStore.update_status`. Terminal states are final.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol

from fhirrag_sdk.core.errors import InvalidArgument

__all__ = [
    "WorkflowStatus",
    "StepStatus",
    "WorkflowRequest",
    "WorkflowStep",
    "OrchestrationContext",
    "OrchestrationResult",
    "WorkflowStateStore",
    "InMemoryWorkflowStateStore",
    "DynamoDbWorkflowStateStore",
]

LOG = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class WorkflowStatus(str, Enum):
    INITIATED = "initiated"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    def can_transition_to(self, target: "WorkflowStatus") -> bool:
        return target in _TRANSITIONS[self]


_TERMINAL = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED})

_TRANSITIONS = {
    WorkflowStatus.INITIATED: frozenset({WorkflowStatus.RUNNING, *_TERMINAL}),
    WorkflowStatus.RUNNING: _TERMINAL,
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
    WorkflowStatus.CANCELLED: frozenset(),
}


class StepStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class WorkflowRequest:
    workflow_type: str
    resource_id: str
    resource_type: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowStep:
    name: str
    status: StepStatus = StepStatus.QUEUED
    queued_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "queued_at": _iso(self.queued_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "WorkflowStep":
        return cls(
            name=str(raw["name"]),
            status=StepStatus(raw.get("status", StepStatus.QUEUED.value)),
            queued_at=_parse_dt(raw.get("queued_at")) or _utcnow(),
            started_at=_parse_dt(raw.get("started_at")),
            completed_at=_parse_dt(raw.get("completed_at")),
            error_message=raw.get("error_message"),
        )


@dataclass
class OrchestrationContext:
    """Identity and state of one workflow (the durable record)."""

    workflow_id: str
    tenant_id: str
    user_id: str
    workflow_type: str
    resource_id: str
    resource_type: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    status: WorkflowStatus = WorkflowStatus.INITIATED
    steps: List[WorkflowStep] = field(default_factory=list)
    error_message: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        return {
            "WorkflowKey": f"tenant:{self.tenant_id}:workflow:{self.workflow_id}",
            "WorkflowId": self.workflow_id,
            "TenantId": self.tenant_id,
            "UserId": self.user_id,
            "WorkflowType": self.workflow_type,
            "ResourceId": self.resource_id,
            "ResourceType": self.resource_type,
            "Parameters": json.dumps(self.parameters, default=str, sort_keys=True),
            "StartedAt": _iso(self.started_at),
            "UpdatedAt": _iso(self.updated_at),
            "Status": self.status.value,
            "Steps": json.dumps([s.to_dict() for s in self.steps]),
            "ErrorMessage": self.error_message,
        }

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "OrchestrationContext":
        params = item.get("Parameters") or "{}"
        steps = item.get("Steps") or "[]"
        return cls(
            workflow_id=str(item["WorkflowId"]),
            tenant_id=str(item["TenantId"]),
            user_id=str(item.get("UserId", "")),
            workflow_type=str(item.get("WorkflowType", "")),
            resource_id=str(item.get("ResourceId", "")),
            resource_type=str(item.get("ResourceType", "")),
            parameters=json.loads(params) if isinstance(params, str) else dict(params),
            started_at=_parse_dt(item.get("StartedAt")) or _utcnow(),
            updated_at=_parse_dt(item.get("UpdatedAt")) or _utcnow(),
            status=WorkflowStatus(item.get("Status", WorkflowStatus.INITIATED.value)),
            steps=[WorkflowStep.from_dict(s) for s in (json.loads(steps) if isinstance(steps, str) else steps)],
            error_message=item.get("ErrorMessage"),
        )

    def to_result(self) -> "OrchestrationResult":
        return OrchestrationResult(
            workflow_id=self.workflow_id,
            status=self.status,
            started_at=self.started_at,
            updated_at=self.updated_at,
            steps=[WorkflowStep(**vars(s)) for s in self.steps],
            error_message=self.error_message,
        )


@dataclass
class OrchestrationResult:
    workflow_id: str
    status: WorkflowStatus
    started_at: datetime
    updated_at: Optional[datetime] = None
    steps: List[WorkflowStep] = field(default_factory=list)
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


# =============================================================================
# State stores
# =============================================================================

class WorkflowStateStore(Protocol):
    """
    Durable workflow records, always addressed by (tenant_id, workflow_id).

    Implementations may block; the orchestration facade calls them from the
    default executor.
    """

    def save(self, record: OrchestrationContext) -> None: ...

    def get(self, tenant_id: str, workflow_id: str) -> Optional[OrchestrationContext]: ...

    def update_status(
        self,
        tenant_id: str,
        workflow_id: str,
        status: WorkflowStatus,
        *,
        error_message: Optional[str] = None,
    ) -> OrchestrationContext: ...


def _apply_status(
    record: OrchestrationContext,
    status: WorkflowStatus,
    error_message: Optional[str],
) -> OrchestrationContext:
    if not record.status.can_transition_to(status):
        raise InvalidArgument(
            f"cannot move workflow from {record.status.value} to {status.value}",
            field="status",
        )
    record.status = status
    record.updated_at = _utcnow()
    if error_message is not None:
        record.error_message = error_message
    return record


class InMemoryWorkflowStateStore:
    """Process-local store for tests and single-node deployments."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}

    @staticmethod
    def _key(tenant_id: str, workflow_id: str) -> str:
        return f"tenant:{tenant_id}:workflow:{workflow_id}"

    def save(self, record: OrchestrationContext) -> None:
        self._records[self._key(record.tenant_id, record.workflow_id)] = record.to_item()

    def get(self, tenant_id: str, workflow_id: str) -> Optional[OrchestrationContext]:
        item = self._records.get(self._key(tenant_id, workflow_id))
        return OrchestrationContext.from_item(item) if item else None

    def update_status(
        self,
        tenant_id: str,
        workflow_id: str,
        status: WorkflowStatus,
        *,
        error_message: Optional[str] = None,
    ) -> OrchestrationContext:
        record = self.get(tenant_id, workflow_id)
        if record is None:
            raise InvalidArgument(f"unknown workflow {workflow_id}", field="workflow_id")
        self.save(_apply_status(record, status, error_message))
        return record


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


class DynamoDbWorkflowStateStore:
    """
    DynamoDB-backed store. The table's partition key is ``WorkflowKey``
    (``tenant:{tenant}:workflow:{id}``).
    """

    def __init__(self, table: Any) -> None:
        self._table = table

    def save(self, record: OrchestrationContext) -> None:
        item = {k: v for k, v in record.to_item().items() if v is not None}
        self._table.put_item(Item=item)

    def get(self, tenant_id: str, workflow_id: str) -> Optional[OrchestrationContext]:
        response = self._table.get_item(Key={"WorkflowKey": f"tenant:{tenant_id}:workflow:{workflow_id}"})
        item = response.get("Item")
        if not item:
            return None
        return OrchestrationContext.from_item({k: _plain(v) for k, v in item.items()})

    def update_status(
        self,
        tenant_id: str,
        workflow_id: str,
        status: WorkflowStatus,
        *,
        error_message: Optional[str] = None,
    ) -> OrchestrationContext:
        record = self.get(tenant_id, workflow_id)
        if record is None:
            raise InvalidArgument(f"unknown workflow {workflow_id}", field="workflow_id")
        self.save(_apply_status(record, status, error_message))
        return record
