# SPDX-License-Identifier: Apache-2.0
"""
Telemetry: step tracking, aggregate metrics and session persistence.
"""

from datetime import datetime, timedelta, timezone

import pytest

from fhirrag_sdk.core.errors import InvalidArgument
from fhirrag_sdk.telemetry.models import (
    TelemetryContext,
    TelemetryMetrics,
    TelemetryStep,
    TelemetryStepStatus,
)
from fhirrag_sdk.telemetry.persistence import load_session, save_session, telemetry_storage_key


def test_step_lifecycle():
    step = TelemetryStep(name="parse")
    assert step.is_in_progress
    assert step.completed_at is None
    assert step.duration == timedelta(0)

    step.complete(False, "bad bundle")
    assert step.status is TelemetryStepStatus.FAILED
    assert step.error_message == "bad bundle"
    assert step.completed_at is not None
    finished_at = step.completed_at

    step.complete(True)
    assert step.status is TelemetryStepStatus.FAILED
    assert step.completed_at == finished_at


def test_step_data():
    step = TelemetryStep(name="embed")
    step.add_data("vectors", 3)
    assert step.get_data("vectors") == 3
    assert step.get_data("missing", "n/a") == "n/a"
    assert step.to_dict()["data"] == {"vectors": 3}


def test_start_step_defaults_description_and_session():
    session = TelemetryContext(tenant_id="tenant-a")
    step = session.start_step("validate")
    assert step.description == "validate"
    assert step.session_id == session.session_id
    assert session.get_step("validate") is step
    assert session.get_step("unknown") is None


def test_complete_forces_in_progress_steps():
    session = TelemetryContext()
    done = session.start_step("a")
    done.complete(True)
    pending = session.start_step("b")

    session.complete(False, "err")
    assert done.status is TelemetryStepStatus.COMPLETED
    assert pending.status is TelemetryStepStatus.FAILED
    assert pending.error_message == "err"
    assert session.completed_at is not None


def test_total_duration_is_zero_without_finished_steps():
    session = TelemetryContext()
    session.start_step("incomplete_step")
    assert session.get_total_duration() == timedelta(0)


def test_total_duration_spans_finished_steps():
    session = TelemetryContext()
    first = session.start_step("step1")
    second = session.start_step("step2")
    now = datetime.now(timezone.utc)

    first.complete(True)
    first.started_at, first.completed_at = now - timedelta(minutes=5), now - timedelta(minutes=3)
    second.complete(True)
    second.started_at, second.completed_at = now - timedelta(minutes=2), now

    assert session.get_total_duration() == timedelta(minutes=5)


def test_metrics_count_outcomes():
    session = TelemetryContext(resource_type="Patient", resource_id="p1")
    for name, ok in (("a", True), ("b", True), ("c", False)):
        session.start_step(name).complete(ok)
    session.start_step("d")

    metrics = session.get_metrics()
    assert metrics.total_steps == 4
    assert metrics.successful_steps == 2
    assert metrics.failed_steps == 1
    assert metrics.success_rate == pytest.approx(0.5)
    assert metrics.get_performance_rating() == 2


@pytest.mark.parametrize(
    "successful,total,avg_s,rating",
    [
        (0, 0, 0, 0),
        (20, 20, 1, 5),
        (19, 20, 30, 5),
        (20, 20, 31, 4),
        (9, 10, 1, 4),
        (8, 10, 1, 3),
        (5, 10, 1, 2),
        (4, 10, 1, 1),
    ],
)
def test_performance_rating_table(successful, total, avg_s, rating):
    metrics = TelemetryMetrics(
        total_steps=total,
        successful_steps=successful,
        failed_steps=total - successful,
        average_step_duration=timedelta(seconds=avg_s),
    )
    assert metrics.get_performance_rating() == rating


def test_session_snapshot_is_json_safe():
    session = TelemetryContext(tenant_id="tenant-a", resource_type="Observation")
    session.start_step("x").complete(True)
    session.complete(True)
    snapshot = session.to_dict()
    assert snapshot["metrics"]["total_steps"] == 1
    assert snapshot["metrics"]["performance_rating"] == 5
    assert snapshot["steps"][0]["status"] == "Completed"


@pytest.mark.asyncio
async def test_save_and_load_session(storage, s3_client, ctx_a):
    session = TelemetryContext(tenant_id="tenant-a", resource_type="Patient", resource_id="p1")
    session.start_step("ingest").complete(True)
    session.complete(True)

    assert await save_session(storage, session, ctx=ctx_a) is True
    assert f"tenant-a/{telemetry_storage_key(session.session_id)}" in s3_client.objects

    loaded = await load_session(storage, session.session_id, ctx=ctx_a)
    assert loaded["session_id"] == session.session_id
    assert loaded["steps"][0]["name"] == "ingest"

    meta = await storage.get_metadata(telemetry_storage_key(session.session_id), ctx=ctx_a)
    assert meta.tags["performance_rating"] == "5"


@pytest.mark.asyncio
async def test_save_session_respects_opt_out_and_tenant(storage, s3_client, ctx_a):
    assert await save_session(storage, TelemetryContext(enable_s3_storage=False), ctx=ctx_a) is False
    assert s3_client.objects == {}

    with pytest.raises(InvalidArgument):
        await save_session(storage, TelemetryContext(tenant_id="tenant-b"), ctx=ctx_a)
