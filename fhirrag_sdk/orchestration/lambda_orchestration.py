# fhirrag_sdk/orchestration/lambda_orchestration.py
# SPDX-License-Identifier: Apache-2.0
"""
Workflow orchestration over SQS (step queue) and Lambda (step executors).

The facade never executes workflow steps itself. It enqueues step messages
on the processing queue and keeps a durable record per workflow in a
:class:`WorkflowStateStore`; workers consuming the queue report progress
back through the store.

Queue messages
--------------
Step message body (JSON)::

    {"MessageType": "step", "WorkflowId": ..., "TenantId": ..., "UserId": ...,
     "StepName": "initialize", "WorkflowType": ..., "ResourceId": ...,
     "ResourceType": ..., "Parameters": {...}, "QueuedAt": "<iso8601>"}

with string attributes ``WorkflowId``, ``TenantId``, ``StepName``,
``WorkflowType``.

Cancellation body::

    {"MessageType": "cancellation", "WorkflowId": ..., "TenantId": ...,
     "RequestedAt": "<iso8601>"}

with attributes ``MessageType=cancellation`` and ``WorkflowId``.
Cancellation is advisory: the worker decides when the workflow stops and
reports ``cancelled`` through the state store.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from fhirrag_sdk.config import LambdaOrchestrationConfig
from fhirrag_sdk.core.context import OperationContext, system_context
from fhirrag_sdk.core.errors import FhirRagError, InvalidArgument
from fhirrag_sdk.core.facade import BaseRemoteFacade, require_text
from fhirrag_sdk.core.metrics import MetricsSink
from fhirrag_sdk.core.retry import RetryPolicy
from fhirrag_sdk.core.security import SecurityContext
from fhirrag_sdk.orchestration.workflow import (
    InMemoryWorkflowStateStore,
    OrchestrationContext,
    OrchestrationResult,
    StepStatus,
    WorkflowRequest,
    WorkflowStateStore,
    WorkflowStatus,
    WorkflowStep,
)

__all__ = ["LambdaOrchestrationService", "INITIAL_STEP"]

LOG = logging.getLogger(__name__)

INITIAL_STEP = "initialize"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _attributes(values: Mapping[str, str]) -> Dict[str, Dict[str, str]]:
    return {name: {"DataType": "String", "StringValue": value} for name, value in values.items()}


class LambdaOrchestrationService(BaseRemoteFacade):
    """
    Start, inspect and cancel workflows.

    Args:
        sqs_client: ``boto3.client("sqs")``
        config: queue URLs and function names
        state_store: durable workflow records (defaults to in-memory)
    """

    _component = "orchestration"
    _service = "sqs"

    def __init__(
        self,
        sqs_client: Any,
        config: Optional[LambdaOrchestrationConfig] = None,
        *,
        state_store: Optional[WorkflowStateStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        self._config = config or LambdaOrchestrationConfig()
        super().__init__(
            retry_policy=retry_policy
            or RetryPolicy(
                max_retries=self._config.max_retries,
                base_delay_s=self._config.retry_delay_s,
                name=self._component,
            ),
            metrics=metrics,
        )
        self._sqs = sqs_client
        self._state: WorkflowStateStore = state_store or InMemoryWorkflowStateStore()

    @property
    def config(self) -> LambdaOrchestrationConfig:
        return self._config

    @property
    def state_store(self) -> WorkflowStateStore:
        return self._state

    # ------------------------------------------------------------------ #
    # Message builders
    # ------------------------------------------------------------------ #

    @staticmethod
    def build_step_message(record: OrchestrationContext, step_name: str, queued_at: datetime) -> Dict[str, Any]:
        return {
            "MessageType": "step",
            "WorkflowId": record.workflow_id,
            "TenantId": record.tenant_id,
            "UserId": record.user_id,
            "StepName": step_name,
            "WorkflowType": record.workflow_type,
            "ResourceId": record.resource_id,
            "ResourceType": record.resource_type,
            "Parameters": dict(record.parameters),
            "QueuedAt": queued_at.isoformat(),
        }

    @staticmethod
    def build_cancellation_message(workflow_id: str, tenant_id: str, requested_at: datetime) -> Dict[str, Any]:
        return {
            "MessageType": "cancellation",
            "WorkflowId": workflow_id,
            "TenantId": tenant_id,
            "RequestedAt": requested_at.isoformat(),
        }

    def _queue_url(self) -> str:
        url = self._config.processing_queue_url
        if not url:
            raise InvalidArgument("processing_queue_url is not configured", field="processing_queue_url")
        return url

    async def _send(self, body: Mapping[str, Any], attributes: Mapping[str, str], ctx: OperationContext) -> str:
        response = await self._retrying(
            self._sqs.send_message,
            ctx=ctx,
            QueueUrl=self._queue_url(),
            MessageBody=json.dumps(body, default=str),
            MessageAttributes=_attributes(attributes),
        )
        return str(response.get("MessageId", ""))

    async def _enqueue_step(self, record: OrchestrationContext, step_name: str, ctx: OperationContext) -> WorkflowStep:
        queued_at = _utcnow()
        message_id = await self._send(
            self.build_step_message(record, step_name, queued_at),
            {
                "WorkflowId": record.workflow_id,
                "TenantId": record.tenant_id,
                "StepName": step_name,
                "WorkflowType": record.workflow_type,
            },
            ctx,
        )
        LOG.debug("queued step %s (message %s)", step_name, message_id)
        return WorkflowStep(name=step_name, status=StepStatus.QUEUED, queued_at=queued_at)

    async def _load(self, security: SecurityContext, workflow_id: str, ctx: OperationContext) -> Optional[OrchestrationContext]:
        record = await self._retrying(self._state.get, security.tenant_id, workflow_id, ctx=ctx)
        if record is None or record.tenant_id != security.tenant_id:
            return None
        return record

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def start_workflow(self, request: WorkflowRequest, *, ctx: OperationContext) -> OrchestrationResult:
        """
        Validate, enqueue the ``initialize`` step, then record the workflow.

        If the enqueue fails the transport error propagates and no workflow
        record is written.
        """

        async def _call(security: SecurityContext) -> OrchestrationResult:
            if request is None:
                raise InvalidArgument("request is required", field="request")
            require_text("workflow_type", request.workflow_type)
            require_text("resource_id", request.resource_id)

            record = OrchestrationContext(
                workflow_id=str(uuid.uuid4()),
                tenant_id=security.tenant_id,
                user_id=security.user_id,
                workflow_type=request.workflow_type,
                resource_id=request.resource_id,
                resource_type=request.resource_type,
                parameters=dict(request.parameters or {}),
            )
            step = await self._enqueue_step(record, INITIAL_STEP, ctx)
            record.steps.append(step)
            record.status = WorkflowStatus.INITIATED
            await self._retrying(self._state.save, record, ctx=ctx)

            LOG.info(
                "workflow %s initiated (%s)",
                record.workflow_id,
                record.workflow_type,
                extra={"tenant": security.tenant_hash()},
            )
            return record.to_result()

        return await self._run_operation(
            "start_workflow",
            ctx,
            _call,
            metric_extra={"workflow_type": getattr(request, "workflow_type", None)},
        )

    async def queue_step(self, workflow_id: str, step_name: str, *, ctx: OperationContext) -> Optional[OrchestrationResult]:
        """Enqueue a follow-up step. Returns ``None`` for unknown workflows."""

        async def _call(security: SecurityContext) -> Optional[OrchestrationResult]:
            require_text("workflow_id", workflow_id)
            require_text("step_name", step_name)
            record = await self._load(security, workflow_id, ctx)
            if record is None:
                return None
            if record.status.is_terminal:
                raise InvalidArgument(
                    f"workflow is already {record.status.value}",
                    field="workflow_id",
                )
            step = await self._enqueue_step(record, step_name, ctx)
            record.steps.append(step)
            record.updated_at = _utcnow()
            await self._retrying(self._state.save, record, ctx=ctx)
            return record.to_result()

        return await self._run_operation("queue_step", ctx, _call)

    async def get_workflow_status(self, workflow_id: str, *, ctx: OperationContext) -> Optional[OrchestrationResult]:
        """Current record for the caller's tenant, or ``None`` when unknown."""

        async def _call(security: SecurityContext) -> Optional[OrchestrationResult]:
            require_text("workflow_id", workflow_id)
            record = await self._load(security, workflow_id, ctx)
            return record.to_result() if record is not None else None

        return await self._run_operation("get_workflow_status", ctx, _call)

    async def cancel_workflow(self, workflow_id: str, *, ctx: OperationContext) -> bool:
        """
        Request cancellation.

        Returns ``False`` when the workflow is unknown to the caller's tenant
        or already terminal; ``True`` once the cancellation message is queued.
        """

        async def _call(security: SecurityContext) -> bool:
            require_text("workflow_id", workflow_id)
            record = await self._load(security, workflow_id, ctx)
            if record is None or record.status.is_terminal:
                return False
            await self._send(
                self.build_cancellation_message(workflow_id, security.tenant_id, _utcnow()),
                {"MessageType": "cancellation", "WorkflowId": workflow_id},
                ctx,
            )
            LOG.info(
                "cancellation requested for workflow %s",
                workflow_id,
                extra={"tenant": security.tenant_hash()},
            )
            return True

        return await self._run_operation("cancel_workflow", ctx, _call)

    async def health(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        """Check that the processing queue is reachable."""
        ctx = ctx if ctx is not None and ctx.security is not None else system_context()
        try:
            await self._call_remote(
                self._sqs.get_queue_attributes,
                ctx=ctx,
                QueueUrl=self._queue_url(),
                AttributeNames=["ApproximateNumberOfMessages"],
            )
        except FhirRagError as e:
            return {"ok": False, "server": "lambda-orchestration", "error": e.code or type(e).__name__}
        return {"ok": True, "server": "lambda-orchestration"}
