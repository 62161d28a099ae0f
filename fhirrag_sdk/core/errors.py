# fhirrag_sdk/core/errors.py
# SPDX-License-Identifier: Apache-2.0
"""
Normalized error taxonomy shared by every FhirRag infrastructure facade.

All facades (Bedrock, storage, orchestration, embeddings) raise subclasses of
:class:`FhirRagError` so callers can branch on a stable, machine-actionable
``code`` instead of provider-specific exception types.

Taxonomy
--------
- InvalidArgument          malformed caller input, never retried
- Unauthorized             missing / expired security context, never retried
- TransientTransport       retryable network or service failure
- ApplicationDeclinedError remote executed but declared failure; only raised
                           when a caller explicitly asks a result to raise
- NotFound                 absent key/resource; facades translate it to
                           ``None`` / ``False`` on read and delete paths
- DimensionMismatch        vectors of unequal length
- Cancelled                cancellation token fired at a suspension point
- DeadlineExceeded         ``ctx.deadline_ms`` elapsed
- NotSupported             a required collaborator is not configured
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

__all__ = [
    "FhirRagError",
    "InvalidArgument",
    "Unauthorized",
    "TransientTransport",
    "ApplicationDeclinedError",
    "NotFound",
    "DimensionMismatch",
    "Cancelled",
    "DeadlineExceeded",
    "NotSupported",
    "is_retryable",
]


class FhirRagError(Exception):
    """
    Base exception for all FhirRag infrastructure errors.

    Attributes:
        message:
            Human-readable description (safe for logs and clients).
        code:
            Upper-snake-case machine code.
        retry_after_ms:
            Optional backoff hint from the remote service (throttling).
        details:
            Additional JSON-safe context (never include secrets/PII).
    """

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retry_after_ms = retry_after_ms
        self.details = dict(details or {})

    def __str__(self) -> str:
        base = self.message or self.__class__.__name__
        if self.code:
            base += f" [code={self.code}]"
        if self.retry_after_ms is not None:
            base += f" retry_after_ms={self.retry_after_ms}"
        if self.details:
            base += f" details={self.details}"
        return base

    def asdict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "retry_after_ms": self.retry_after_ms,
            "details": dict(self.details),
        }


class InvalidArgument(FhirRagError):
    """
    Client error: a required field is missing, empty or out of range.

    The offending field name is exposed as ``field`` and in ``details``.
    """

    def __init__(self, message: str = "", *, field: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("code", "INVALID_ARGUMENT")
        details = dict(kwargs.pop("details", None) or {})
        if field is not None:
            details.setdefault("field", field)
        super().__init__(message, details=details, **kwargs)
        self.field = field


class Unauthorized(FhirRagError):
    def __init__(self, message: str = "", **kwargs: Any):
        kwargs.setdefault("code", "UNAUTHORIZED")
        super().__init__(message, **kwargs)


class TransientTransport(FhirRagError):
    """Retryable network or service failure (throttling, 5xx, timeouts)."""

    def __init__(self, message: str = "", **kwargs: Any):
        kwargs.setdefault("code", "TRANSIENT_TRANSPORT")
        super().__init__(message, **kwargs)


class ApplicationDeclinedError(FhirRagError):
    """
    The remote dependency executed the call but declared an application failure.

    Remote-call facades never raise this; they return a failed result instead.
    Results expose ``raise_for_error()`` for callers who prefer exceptions.
    """

    def __init__(self, message: str = "", **kwargs: Any):
        kwargs.setdefault("code", "APPLICATION_DECLINED")
        super().__init__(message, **kwargs)


class NotFound(FhirRagError):
    def __init__(self, message: str = "", **kwargs: Any):
        kwargs.setdefault("code", "NOT_FOUND")
        super().__init__(message, **kwargs)


class DimensionMismatch(FhirRagError):
    def __init__(self, message: str = "", **kwargs: Any):
        kwargs.setdefault("code", "DIMENSION_MISMATCH")
        super().__init__(message, **kwargs)


class Cancelled(FhirRagError):
    def __init__(self, message: str = "operation cancelled", **kwargs: Any):
        kwargs.setdefault("code", "CANCELLED")
        super().__init__(message, **kwargs)


class DeadlineExceeded(FhirRagError):
    def __init__(self, message: str = "deadline exceeded", **kwargs: Any):
        kwargs.setdefault("code", "DEADLINE_EXCEEDED")
        super().__init__(message, **kwargs)


class NotSupported(FhirRagError):
    def __init__(self, message: str = "", **kwargs: Any):
        kwargs.setdefault("code", "NOT_SUPPORTED")
        super().__init__(message, **kwargs)


def is_retryable(exc: BaseException) -> bool:
    """Default retry classification: only transport-level failures are retried."""
    return isinstance(exc, TransientTransport)
