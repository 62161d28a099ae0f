# SPDX-License-Identifier: Apache-2.0
"""
Orchestration: direct Lambda invocation.
"""

import base64
import json

import pytest

from fhirrag_sdk.core.errors import ApplicationDeclinedError, InvalidArgument
from fhirrag_sdk.orchestration.lambda_invoker import LambdaFunctionInvoker
from tests.mock.fake_aws import FakeLambda, throttled

pytestmark = pytest.mark.asyncio


async def test_sync_invocation_returns_payload(invoker, lambda_client, ctx_a):
    result = await invoker.invoke("fhir-rag-processor", {"resource": "Patient/1"}, ctx=ctx_a)

    assert result.is_success
    assert result.status_code == 200
    assert result.json() == {"ok": True}
    assert result.metadata["invocation_type"] == "RequestResponse"

    (_, kwargs) = lambda_client.calls[0]
    assert kwargs["FunctionName"] == "fhir-rag-processor"
    assert json.loads(kwargs["Payload"]) == {"resource": "Patient/1"}
    client_context = json.loads(base64.b64decode(kwargs["ClientContext"]))
    assert client_context == {"custom": {"tenant_id": "tenant-a", "user_id": "alice"}}


async def test_async_invocation_expects_202(invoker, lambda_client, ctx_a):
    result = await invoker.invoke("fhir-rag-embeddings", {}, ctx=ctx_a, is_async=True)
    assert result.is_success
    assert result.status_code == 202
    assert result.json() is None
    assert lambda_client.calls[0][1]["InvocationType"] == "Event"


async def test_function_error_is_failed_result(fast_retry, ctx_a):
    client = FakeLambda(function_error="Unhandled", payload={"errorMessage": "boom"})
    invoker = LambdaFunctionInvoker(client, retry_policy=fast_retry)
    result = await invoker.invoke("fhir-rag-query", {}, ctx=ctx_a)

    assert not result.is_success
    assert result.error_message == "Unhandled"
    assert result.json() == {"errorMessage": "boom"}
    assert client.count("invoke") == 1
    with pytest.raises(ApplicationDeclinedError):
        result.raise_for_error()


async def test_throttled_invocation_retried(invoker, lambda_client, ctx_a, sleeps):
    lambda_client.failures = [throttled("Invoke")]
    result = await invoker.invoke("fhir-rag-query", {}, ctx=ctx_a)
    assert result.is_success
    assert lambda_client.count("invoke") == 2
    assert sleeps == [2.0]


async def test_function_name_required(invoker, lambda_client, ctx_a):
    with pytest.raises(InvalidArgument):
        await invoker.invoke("", {}, ctx=ctx_a)
    assert lambda_client.calls == []


async def test_undecodable_payload_is_kept_as_text(fast_retry, ctx_a):
    client = FakeLambda(payload=b"\xff\xfe raw bytes")
    invoker = LambdaFunctionInvoker(client, retry_policy=fast_retry)
    result = await invoker.invoke("fhir-rag-processor", {}, ctx=ctx_a)

    assert result.is_success
    assert result.payload.endswith(" raw bytes")
