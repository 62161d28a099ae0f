# fhirrag_sdk/core/facade.py
# SPDX-License-Identifier: Apache-2.0
"""
Resilient client facade base.

Every public facade operation runs the same pipeline:

    authorize -> validate -> build request -> execute with retry -> map response

:class:`BaseRemoteFacade` owns the parts that are identical across facades:

- authorization against ``ctx.security`` before anything else runs
- cancellation and deadline preflight
- running blocking boto3 calls off the event loop and translating botocore
  errors into the normalized taxonomy
- retrying translated errors through the facade's :class:`RetryPolicy`
- metrics (tenant hashed, never raw) and one telemetry step per operation
  when ``ctx.telemetry`` is present

Subclasses implement validation, request building and response mapping.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from fhirrag_sdk.core.aws_errors import AWS_ERRORS, translate_aws_error
from fhirrag_sdk.core.context import OperationContext, require_security
from fhirrag_sdk.core.error_context import attach_context
from fhirrag_sdk.core.errors import DeadlineExceeded, InvalidArgument
from fhirrag_sdk.core.metrics import MetricsSink, NoopMetrics
from fhirrag_sdk.core.retry import RetryPolicy
from fhirrag_sdk.core.security import SecurityContext, tenant_hash

__all__ = ["BaseRemoteFacade", "require_text"]

LOG = logging.getLogger(__name__)

T = TypeVar("T")


def require_text(field: str, value: Optional[str]) -> str:
    """Reject ``None`` / blank strings with :class:`InvalidArgument` naming ``field``."""
    if value is None or not str(value).strip():
        raise InvalidArgument(f"{field} must be a non-empty string", field=field)
    return value


class BaseRemoteFacade:
    """
    Shared gate logic for AWS-backed facades.

    Attributes:
        _component: Metrics / telemetry component label.
        _service:   AWS service name used in error details.
    """

    _component = "remote"
    _service = "aws"

    def __init__(
        self,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        self._retry = retry_policy or RetryPolicy(name=self._component)
        self._metrics: MetricsSink = metrics or NoopMetrics()

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release resources. boto3 clients are shared and left open."""
        return None

    # ------------------------------------------------------------------ #
    # Observability helpers
    # ------------------------------------------------------------------ #

    def _record(
        self,
        op: str,
        t0: float,
        ok: bool,
        *,
        code: str = "OK",
        ctx: Optional[OperationContext] = None,
        **extra: Any,
    ) -> None:
        """
        Emit a timing metric for an operation.

        Any failures in metrics emission are swallowed.
        """
        try:
            ms = (time.monotonic() - t0) * 1000.0
            x = dict(extra or {})
            if ctx is not None and ctx.tenant_id:
                x["tenant"] = tenant_hash(ctx.tenant_id)
            self._metrics.observe(
                component=self._component,
                op=op,
                ms=ms,
                ok=ok,
                code=code,
                extra=x or None,
            )
        except Exception:
            pass

    @staticmethod
    def _preflight(ctx: Optional[OperationContext]) -> None:
        if ctx is None:
            return
        if ctx.cancellation is not None:
            ctx.cancellation.raise_if_cancelled()
        if ctx.deadline_ms is not None and int(time.time() * 1000) >= ctx.deadline_ms:
            raise DeadlineExceeded("deadline already exceeded", details={"remaining_ms": 0})

    # ------------------------------------------------------------------ #
    # Gates
    # ------------------------------------------------------------------ #

    async def _run_operation(
        self,
        op: str,
        ctx: Optional[OperationContext],
        call: Callable[[SecurityContext], Awaitable[T]],
        *,
        metric_extra: Optional[Mapping[str, Any]] = None,
    ) -> T:
        """
        Authorize, then run ``call(security)`` with metrics and step tracking.

        ``call`` performs validation, request building, the retried remote
        call and response mapping. Authorization failures are raised before
        ``call`` is entered, so nothing reaches the network.
        """
        security = require_security(ctx)
        self._preflight(ctx)

        step = None
        if ctx is not None and ctx.telemetry is not None:
            step = ctx.telemetry.start_step(f"{self._component}.{op}")
            if ctx.request_id:
                step.add_data("request_id", ctx.request_id)

        t0 = time.monotonic()
        LOG.debug(
            "%s.%s start",
            self._component,
            op,
            extra={"tenant": security.tenant_hash(), "request_id": getattr(ctx, "request_id", None)},
        )
        try:
            result = await call(security)
        except Exception as exc:
            code = getattr(exc, "code", None) or type(exc).__name__
            self._record(op, t0, False, code=code, ctx=ctx, **dict(metric_extra or {}))
            if step is not None:
                step.complete(False, str(exc) or code)
            attach_context(
                exc,
                self._component,
                operation=op,
                tenant=security.tenant_hash(),
                request_id=getattr(ctx, "request_id", None),
            )
            LOG.error(
                "%s.%s failed: %s",
                self._component,
                op,
                code,
                extra={"tenant": security.tenant_hash()},
            )
            raise

        self._record(op, t0, True, ctx=ctx, **dict(metric_extra or {}))
        if step is not None:
            step.complete(True)
        return result

    async def _call_remote(
        self,
        fn: Callable[..., T],
        *args: Any,
        ctx: Optional[OperationContext] = None,
        **kwargs: Any,
    ) -> T:
        """
        Run one blocking boto3 call in the default executor.

        botocore exceptions are translated (and chained) at this boundary.
        """
        self._preflight(ctx)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
        except AWS_ERRORS as exc:
            raise translate_aws_error(exc, service=self._service) from exc

    async def _retrying(
        self,
        fn: Callable[..., T],
        *args: Any,
        ctx: Optional[OperationContext] = None,
        **kwargs: Any,
    ) -> T:
        """
        ``_call_remote`` executed through the facade's retry policy.

        Retries beyond the first attempt are counted as ``<component>.retries``
        whether or not the call eventually succeeds.
        """
        attempts = 0

        def attempt() -> Awaitable[T]:
            nonlocal attempts
            attempts += 1
            return self._call_remote(fn, *args, ctx=ctx, **kwargs)

        try:
            return await self._retry.execute(attempt, ctx=ctx)
        finally:
            if attempts > 1:
                self._count("retries", attempts - 1)

    def _count(self, name: str, value: int = 1) -> None:
        try:
            self._metrics.counter(component=self._component, name=name, value=value)
        except Exception:
            pass
