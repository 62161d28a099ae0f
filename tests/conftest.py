# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures and a per-component terminal summary for the FhirRag SDK suite.

Every facade under test is wired to the in-process boto3 fakes from
``tests/mock/fake_aws.py`` and to a retry policy whose sleeper records the
requested delays instead of waiting.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest

from fhirrag_sdk.config import BedrockLlmConfig, LambdaOrchestrationConfig
from fhirrag_sdk.core.context import OperationContext
from fhirrag_sdk.core.metrics import InMemoryMetrics
from fhirrag_sdk.core.retry import RetryPolicy
from fhirrag_sdk.core.security import SecurityContext
from fhirrag_sdk.llm.bedrock import BedrockLlmService
from fhirrag_sdk.orchestration.lambda_invoker import LambdaFunctionInvoker
from fhirrag_sdk.orchestration.lambda_orchestration import LambdaOrchestrationService
from fhirrag_sdk.orchestration.workflow import InMemoryWorkflowStateStore
from fhirrag_sdk.storage.aws_storage import AwsStorageService
from tests.mock.fake_aws import FakeBedrockRuntime, FakeLambda, FakeS3, FakeSqs, FakeTable

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/fhir-rag-processing"

COMPONENTS = ("core", "llm", "storage", "orchestration", "telemetry", "embedding")


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def no_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def fast_retry(no_sleep) -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay_s=0.0, sleeper=no_sleep, name="test")


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

def make_security(tenant_id: str, user_id: str = "user-1", **overrides) -> SecurityContext:
    now = datetime.now(timezone.utc)
    fields = dict(
        user_id=user_id,
        tenant_id=tenant_id,
        permissions={"fhir:read", "fhir:write"},
        roles={"clinician"},
        is_authenticated=True,
        authenticated_at=now,
        expires_at=now + timedelta(hours=1),
        session_id="session-1",
    )
    fields.update(overrides)
    return SecurityContext(**fields)


@pytest.fixture
def security_a() -> SecurityContext:
    return make_security("tenant-a", "alice")


@pytest.fixture
def security_b() -> SecurityContext:
    return make_security("tenant-b", "bob")


@pytest.fixture
def ctx_a(security_a) -> OperationContext:
    return OperationContext(request_id="req-a", security=security_a)


@pytest.fixture
def ctx_b(security_b) -> OperationContext:
    return OperationContext(request_id="req-b", security=security_b)


@pytest.fixture
def metrics() -> InMemoryMetrics:
    return InMemoryMetrics()


# ---------------------------------------------------------------------------
# Fake AWS clients
# ---------------------------------------------------------------------------

@pytest.fixture
def bedrock_client() -> FakeBedrockRuntime:
    return FakeBedrockRuntime()


@pytest.fixture
def s3_client() -> FakeS3:
    return FakeS3()


@pytest.fixture
def metadata_table() -> FakeTable:
    return FakeTable(key_name="Key", page_size=2)


@pytest.fixture
def sqs_client() -> FakeSqs:
    return FakeSqs()


@pytest.fixture
def lambda_client() -> FakeLambda:
    return FakeLambda()


# ---------------------------------------------------------------------------
# Facades
# ---------------------------------------------------------------------------

@pytest.fixture
def llm(bedrock_client, fast_retry, metrics) -> BedrockLlmService:
    return BedrockLlmService(
        bedrock_client,
        BedrockLlmConfig(embedding_dimensions=8),
        retry_policy=fast_retry,
        metrics=metrics,
    )


@pytest.fixture
def storage(s3_client, metadata_table, fast_retry, metrics) -> AwsStorageService:
    return AwsStorageService(s3_client, metadata_table, retry_policy=fast_retry, metrics=metrics)


@pytest.fixture
def state_store() -> InMemoryWorkflowStateStore:
    return InMemoryWorkflowStateStore()


@pytest.fixture
def orchestration(sqs_client, state_store, fast_retry, metrics) -> LambdaOrchestrationService:
    return LambdaOrchestrationService(
        sqs_client,
        LambdaOrchestrationConfig(processing_queue_url=QUEUE_URL),
        state_store=state_store,
        retry_policy=fast_retry,
        metrics=metrics,
    )


@pytest.fixture
def invoker(lambda_client, fast_retry, metrics) -> LambdaFunctionInvoker:
    return LambdaFunctionInvoker(lambda_client, retry_policy=fast_retry, metrics=metrics)


# ---------------------------------------------------------------------------
# Terminal summary
# ---------------------------------------------------------------------------

def _component_of(nodeid: str) -> str:
    parts = nodeid.split("/")
    if len(parts) > 2 and parts[0] == "tests" and parts[1] in COMPONENTS:
        return parts[1]
    return "other"


def pytest_configure(config: pytest.Config) -> None:
    for component in COMPONENTS:
        config.addinivalue_line("markers", f"{component}: {component} component tests")


def pytest_terminal_summary(terminalreporter, exitstatus, config) -> None:
    passed: Dict[str, int] = Counter()
    failed: Dict[str, int] = Counter()
    for key, bucket in (("passed", passed), ("failed", failed), ("error", failed)):
        for report in terminalreporter.stats.get(key, []):
            nodeid = getattr(report, "nodeid", "")
            if nodeid:
                bucket[_component_of(nodeid)] += 1

    seen = sorted(set(passed) | set(failed))
    if not seen:
        return
    terminalreporter.write_sep("=", "FhirRag SDK component summary")
    for component in seen:
        total = passed[component] + failed[component]
        status = "ok" if not failed[component] else f"{failed[component]} failing"
        terminalreporter.write_line(f"  {component:<14} {passed[component]:>4}/{total:<4} {status}")
