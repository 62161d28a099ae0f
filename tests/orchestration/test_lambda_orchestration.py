# SPDX-License-Identifier: Apache-2.0
"""
Orchestration: workflow start, status and cancellation over SQS.

Asserts:
  • start_workflow enqueues exactly one "initialize" step and records the workflow
  • A failed enqueue propagates and leaves no workflow record behind
  • Status lookups are tenant-scoped
  • Cancellation is queued for live workflows and refused for terminal ones
  • Queue messages conform to the published message schemas
"""

import uuid

import pytest

from fhirrag_sdk.config import LambdaOrchestrationConfig
from fhirrag_sdk.core.errors import InvalidArgument, TransientTransport
from fhirrag_sdk.orchestration.lambda_orchestration import INITIAL_STEP, LambdaOrchestrationService
from fhirrag_sdk.orchestration.workflow import StepStatus, WorkflowRequest, WorkflowStatus
from tests.conftest import QUEUE_URL
from tests.mock.fake_aws import FakeSqs, connection_error
from tests.utils.schema_registry import assert_valid

pytestmark = pytest.mark.asyncio

REQUEST = WorkflowRequest(
    workflow_type="fhir-ingest",
    resource_id="Patient/123",
    resource_type="Patient",
    parameters={"priority": "high"},
)


async def test_start_workflow_enqueues_initial_step(orchestration, sqs_client, ctx_a):
    result = await orchestration.start_workflow(REQUEST, ctx=ctx_a)

    assert uuid.UUID(result.workflow_id)
    assert result.status is WorkflowStatus.INITIATED
    assert [(s.name, s.status) for s in result.steps] == [(INITIAL_STEP, StepStatus.QUEUED)]

    (message,) = sqs_client.messages
    assert message["QueueUrl"] == QUEUE_URL
    (body,) = sqs_client.bodies()
    assert body["MessageType"] == "step"
    assert body["WorkflowId"] == result.workflow_id
    assert body["TenantId"] == "tenant-a"
    assert body["UserId"] == "alice"
    assert body["StepName"] == INITIAL_STEP
    assert body["Parameters"] == {"priority": "high"}


async def test_step_message_matches_schema(orchestration, sqs_client, ctx_a):
    await orchestration.start_workflow(REQUEST, ctx=ctx_a)
    (message,) = sqs_client.messages
    assert_valid("orchestration/step_message.json", sqs_client.bodies()[0])
    assert_valid("orchestration/message_attributes.json", message["MessageAttributes"])
    assert set(message["MessageAttributes"]) == {"WorkflowId", "TenantId", "StepName", "WorkflowType"}


async def test_failed_enqueue_writes_no_record(orchestration, sqs_client, state_store, ctx_a):
    sqs_client.failures = [connection_error()] * 4
    with pytest.raises(TransientTransport):
        await orchestration.start_workflow(REQUEST, ctx=ctx_a)
    assert sqs_client.count("send_message") == 4
    assert state_store._records == {}


@pytest.mark.parametrize(
    "request_,field",
    [
        (WorkflowRequest(workflow_type="", resource_id="r"), "workflow_type"),
        (WorkflowRequest(workflow_type="t", resource_id=" "), "resource_id"),
    ],
)
async def test_start_workflow_validation(orchestration, sqs_client, ctx_a, request_, field):
    with pytest.raises(InvalidArgument) as excinfo:
        await orchestration.start_workflow(request_, ctx=ctx_a)
    assert excinfo.value.field == field
    assert sqs_client.messages == []


async def test_missing_queue_url_is_invalid(sqs_client, fast_retry, ctx_a):
    svc = LambdaOrchestrationService(sqs_client, LambdaOrchestrationConfig(), retry_policy=fast_retry)
    with pytest.raises(InvalidArgument) as excinfo:
        await svc.start_workflow(REQUEST, ctx=ctx_a)
    assert excinfo.value.field == "processing_queue_url"


async def test_status_lookup_is_tenant_scoped(orchestration, ctx_a, ctx_b):
    started = await orchestration.start_workflow(REQUEST, ctx=ctx_a)

    found = await orchestration.get_workflow_status(started.workflow_id, ctx=ctx_a)
    assert found.workflow_id == started.workflow_id
    assert found.status is WorkflowStatus.INITIATED

    assert await orchestration.get_workflow_status(started.workflow_id, ctx=ctx_b) is None
    assert await orchestration.get_workflow_status(str(uuid.uuid4()), ctx=ctx_a) is None


async def test_worker_reported_status_is_visible(orchestration, state_store, ctx_a):
    started = await orchestration.start_workflow(REQUEST, ctx=ctx_a)
    state_store.update_status("tenant-a", started.workflow_id, WorkflowStatus.RUNNING)
    state_store.update_status("tenant-a", started.workflow_id, WorkflowStatus.FAILED, error_message="bad bundle")

    result = await orchestration.get_workflow_status(started.workflow_id, ctx=ctx_a)
    assert result.status is WorkflowStatus.FAILED
    assert result.is_terminal
    assert result.error_message == "bad bundle"


async def test_cancel_workflow_queues_cancellation(orchestration, sqs_client, ctx_a):
    started = await orchestration.start_workflow(REQUEST, ctx=ctx_a)
    assert await orchestration.cancel_workflow(started.workflow_id, ctx=ctx_a) is True

    message = sqs_client.messages[-1]
    body = sqs_client.bodies()[-1]
    assert_valid("orchestration/cancellation_message.json", body)
    assert body["WorkflowId"] == started.workflow_id
    assert message["MessageAttributes"]["MessageType"] == {"DataType": "String", "StringValue": "cancellation"}

    # Advisory only: the stored status is left for the worker to move.
    current = await orchestration.get_workflow_status(started.workflow_id, ctx=ctx_a)
    assert current.status is WorkflowStatus.INITIATED


async def test_cancel_unknown_or_terminal_workflow(orchestration, state_store, sqs_client, ctx_a, ctx_b):
    assert await orchestration.cancel_workflow(str(uuid.uuid4()), ctx=ctx_a) is False

    started = await orchestration.start_workflow(REQUEST, ctx=ctx_a)
    assert await orchestration.cancel_workflow(started.workflow_id, ctx=ctx_b) is False

    state_store.update_status("tenant-a", started.workflow_id, WorkflowStatus.COMPLETED)
    sent = len(sqs_client.messages)
    assert await orchestration.cancel_workflow(started.workflow_id, ctx=ctx_a) is False
    assert len(sqs_client.messages) == sent


async def test_queue_follow_up_step(orchestration, sqs_client, state_store, ctx_a):
    started = await orchestration.start_workflow(REQUEST, ctx=ctx_a)
    result = await orchestration.queue_step(started.workflow_id, "embed", ctx=ctx_a)

    assert [s.name for s in result.steps] == [INITIAL_STEP, "embed"]
    assert sqs_client.bodies()[-1]["StepName"] == "embed"
    assert await orchestration.queue_step(str(uuid.uuid4()), "embed", ctx=ctx_a) is None

    state_store.update_status("tenant-a", started.workflow_id, WorkflowStatus.CANCELLED)
    with pytest.raises(InvalidArgument):
        await orchestration.queue_step(started.workflow_id, "embed", ctx=ctx_a)


async def test_health(orchestration, sqs_client, fast_retry):
    assert (await orchestration.health())["ok"] is True
    sqs_client.failures = [connection_error()]
    report = await orchestration.health()
    assert report == {"ok": False, "server": "lambda-orchestration", "error": "TRANSIENT_TRANSPORT"}

    unconfigured = LambdaOrchestrationService(FakeSqs(), retry_policy=fast_retry)
    assert (await unconfigured.health())["error"] == "INVALID_ARGUMENT"
