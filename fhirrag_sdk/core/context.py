# fhirrag_sdk/core/context.py
# SPDX-License-Identifier: Apache-2.0
"""
Per-call operation context.

Every public facade operation takes ``ctx: OperationContext``. The context
carries the caller's :class:`SecurityContext`, an optional cancellation
token, an optional telemetry session and tracing metadata. It is immutable;
use :meth:`OperationContext.with_updates` to derive a new one.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Mapping, Optional

from fhirrag_sdk.core.cancellation import CancellationToken
from fhirrag_sdk.core.errors import Unauthorized
from fhirrag_sdk.core.security import SecurityContext

if TYPE_CHECKING:
    from fhirrag_sdk.telemetry.models import TelemetryContext

__all__ = ["OperationContext", "require_security", "system_context"]

# Separators used when tenant ids are embedded in storage keys.
RESERVED_TENANT_CHARS = frozenset("/:")


@dataclass(frozen=True)
class OperationContext:
    """
    Context for infrastructure operations.

    Attributes:
        request_id:
            Correlation ID for tracing across systems.
        deadline_ms:
            Absolute epoch ms; checked before every remote attempt.
        traceparent:
            W3C traceparent header for distributed tracing.
        security:
            Caller identity; required by every tenant-scoped operation.
        cancellation:
            Cooperative cancellation signal.
        telemetry:
            Session that records one step per facade operation, when present.
        attrs:
            Additional JSON-serializable attributes.
    """

    request_id: Optional[str] = None
    deadline_ms: Optional[int] = None
    traceparent: Optional[str] = None
    security: Optional[SecurityContext] = None
    cancellation: Optional[CancellationToken] = None
    telemetry: Optional["TelemetryContext"] = None
    attrs: Mapping[str, Any] = None

    def __post_init__(self) -> None:
        if self.attrs is None:
            object.__setattr__(self, "attrs", {})

    @property
    def tenant_id(self) -> Optional[str]:
        return self.security.tenant_id if self.security else None

    def remaining_ms(self) -> Optional[int]:
        if self.deadline_ms is None:
            return None
        return max(0, self.deadline_ms - int(time.time() * 1000))

    def with_updates(self, **changes: Any) -> "OperationContext":
        return replace(self, **changes)


def require_security(ctx: Optional[OperationContext]) -> SecurityContext:
    """
    Return the caller's security context or raise :class:`Unauthorized`.

    A context is usable when it is present, not expired, authenticated (or a
    system user) and bound to a tenant. Tenant ids may not contain ``/`` or
    ``:`` since they are embedded in tenant-scoped keys.
    """
    security = ctx.security if ctx is not None else None
    if security is None:
        raise Unauthorized("security context is required")
    if security.is_expired():
        raise Unauthorized("security context has expired")
    if not (security.is_authenticated or security.is_system_user):
        raise Unauthorized("caller is not authenticated")
    if not security.tenant_id:
        raise Unauthorized("security context has no tenant")
    if RESERVED_TENANT_CHARS.intersection(security.tenant_id):
        raise Unauthorized("tenant id contains reserved characters")
    return security


def system_context(*, request_id: Optional[str] = None, tenant_id: str = "system") -> OperationContext:
    """Context for internal callers (health checks, maintenance jobs)."""
    return OperationContext(
        request_id=request_id,
        security=SecurityContext(
            user_id="system",
            tenant_id=tenant_id,
            is_system_user=True,
            is_authenticated=True,
        ),
    )
