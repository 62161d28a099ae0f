# fhirrag_sdk/core/aws_errors.py
# SPDX-License-Identifier: Apache-2.0
"""
Translation of botocore exceptions into the normalized error taxonomy.

Every facade calls :func:`translate_aws_error` at the boundary and re-raises
with ``raise translate_aws_error(exc, service=...) from exc`` so the original
provider exception stays on ``__cause__``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from fhirrag_sdk.core.errors import (
    FhirRagError,
    InvalidArgument,
    NotFound,
    TransientTransport,
    Unauthorized,
)

__all__ = ["AWS_ERRORS", "translate_aws_error", "error_code"]

# Exceptions raised by boto3 clients that the facades translate.
AWS_ERRORS = (ClientError, BotoCoreError)

_NOT_FOUND_CODES = {
    "NoSuchKey",
    "NotFound",
    "404",
    "NoSuchBucket",
    "ResourceNotFoundException",
}

_AUTH_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnrecognizedClientException",
    "InvalidSignatureException",
    "InvalidClientTokenId",
    "ExpiredToken",
    "ExpiredTokenException",
    "403",
    "401",
}

_INVALID_CODES = {
    "ValidationException",
    "ValidationError",
    "InvalidParameterValue",
    "InvalidParameterValueException",
    "InvalidRequest",
    "InvalidRequestContentException",
    "RequestEntityTooLargeException",
    "ConditionalCheckFailedException",
    "AWS.SimpleQueueService.NonExistentQueue",
}

_TRANSIENT_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "TooManyRequestsException",
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "SlowDown",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "ModelNotReadyException",
    "ModelTimeoutException",
    "InternalServerError",
    "InternalServerException",
    "RequestTimeout",
}


def error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "")


def _http_status(exc: ClientError) -> Optional[int]:
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _retry_after_ms(exc: ClientError) -> Optional[int]:
    headers = exc.response.get("ResponseMetadata", {}).get("HTTPHeaders") or {}
    raw = headers.get("retry-after") or headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0, int(float(raw) * 1000))
    except (TypeError, ValueError):
        return None


def translate_aws_error(exc: BaseException, *, service: str) -> FhirRagError:
    """
    Map a botocore exception to a :class:`FhirRagError`.

    Already-normalized errors pass through unchanged. Unknown ``ClientError``
    codes and all ``BotoCoreError`` (connection, endpoint, read timeout) are
    classified as :class:`TransientTransport`.
    """
    if isinstance(exc, FhirRagError):
        return exc

    if isinstance(exc, ClientError):
        code = error_code(exc)
        status = _http_status(exc)
        message = exc.response.get("Error", {}).get("Message") or str(exc)
        details: Dict[str, Any] = {"service": service, "aws_code": code or None}
        if status is not None:
            details["status"] = status

        if code in _NOT_FOUND_CODES or status == 404:
            return NotFound(message, details=details)
        if code in _AUTH_CODES or status in (401, 403):
            return Unauthorized(message, details=details)
        if code in _TRANSIENT_CODES:
            return TransientTransport(
                message,
                retry_after_ms=_retry_after_ms(exc),
                details=details,
            )
        if code in _INVALID_CODES or status == 400:
            return InvalidArgument(message, details=details)
        return TransientTransport(
            message,
            retry_after_ms=_retry_after_ms(exc),
            details=details,
        )

    # BotoCoreError and anything else raised by the transport
    return TransientTransport(
        str(exc) or type(exc).__name__,
        details={"service": service, "error": type(exc).__name__},
    )
