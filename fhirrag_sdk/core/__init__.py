# fhirrag_sdk/core/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Shared building blocks for every facade: error taxonomy, security and
operation context, cancellation, retry policy, metrics.
"""

from fhirrag_sdk.core.cancellation import CancellationToken
from fhirrag_sdk.core.context import OperationContext, require_security, system_context
from fhirrag_sdk.core.errors import (
    ApplicationDeclinedError,
    Cancelled,
    DeadlineExceeded,
    DimensionMismatch,
    FhirRagError,
    InvalidArgument,
    NotFound,
    NotSupported,
    TransientTransport,
    Unauthorized,
    is_retryable,
)
from fhirrag_sdk.core.metrics import InMemoryMetrics, MetricsSink, NoopMetrics
from fhirrag_sdk.core.retry import RetryPolicy, RetryStats
from fhirrag_sdk.core.security import (
    SecurityContext,
    SecurityContextProvider,
    StaticSecurityContextProvider,
)

__all__ = [
    "CancellationToken",
    "OperationContext",
    "require_security",
    "system_context",
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
    "MetricsSink",
    "NoopMetrics",
    "InMemoryMetrics",
    "RetryPolicy",
    "RetryStats",
    "SecurityContext",
    "SecurityContextProvider",
    "StaticSecurityContextProvider",
]
