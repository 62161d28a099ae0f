# SPDX-License-Identifier: Apache-2.0
"""
Core: botocore error translation and retry classification.
"""

import pytest

from fhirrag_sdk.core.aws_errors import error_code, translate_aws_error
from fhirrag_sdk.core.errors import (
    FhirRagError,
    InvalidArgument,
    NotFound,
    TransientTransport,
    Unauthorized,
    is_retryable,
)
from tests.mock.fake_aws import client_error, connection_error


@pytest.mark.parametrize(
    "code,status,expected",
    [
        ("NoSuchKey", 404, NotFound),
        ("ResourceNotFoundException", 400, NotFound),
        ("AccessDeniedException", 403, Unauthorized),
        ("ExpiredToken", 400, Unauthorized),
        ("ThrottlingException", 400, TransientTransport),
        ("ProvisionedThroughputExceededException", 400, TransientTransport),
        ("ServiceUnavailableException", 503, TransientTransport),
        ("ValidationException", 400, InvalidArgument),
        ("SomethingNew", 400, InvalidArgument),
        ("InternalFailure", 500, TransientTransport),
    ],
)
def test_client_error_classification(code, status, expected):
    err = translate_aws_error(client_error(code, status), service="s3")
    assert type(err) is expected
    assert err.details["service"] == "s3"
    assert err.details["aws_code"] == code
    assert err.details["status"] == status


def test_throttling_carries_retry_after_hint():
    exc = client_error("ThrottlingException", 400)
    exc.response["ResponseMetadata"]["HTTPHeaders"]["retry-after"] = "2"
    err = translate_aws_error(exc, service="bedrock-runtime")
    assert isinstance(err, TransientTransport)
    assert err.retry_after_ms == 2000
    assert is_retryable(err)


def test_transport_errors_are_transient():
    err = translate_aws_error(connection_error(), service="sqs")
    assert isinstance(err, TransientTransport)
    assert err.details["error"] == "EndpointConnectionError"


def test_normalized_errors_pass_through():
    original = InvalidArgument("bad", field="key")
    assert translate_aws_error(original, service="s3") is original


def test_only_transient_errors_are_retryable():
    assert is_retryable(TransientTransport("x"))
    assert not is_retryable(InvalidArgument("x"))
    assert not is_retryable(NotFound("x"))
    assert not is_retryable(ValueError("x"))


def test_error_code_and_rendering():
    assert error_code(client_error("SlowDown", 503)) == "SlowDown"
    err = InvalidArgument("prompt must be set", field="prompt")
    assert err.code == "INVALID_ARGUMENT"
    assert err.details == {"field": "prompt"}
    assert "[code=INVALID_ARGUMENT]" in str(err)
    assert err.asdict()["error"] == "InvalidArgument"
    assert isinstance(err, FhirRagError)
