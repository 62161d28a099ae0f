# fhirrag_sdk/core/retry.py
# SPDX-License-Identifier: Apache-2.0
"""
Exponential-backoff retry policy shared by every remote facade.

Backoff math
------------
The delay before retry ``n`` (1-indexed) is ``2**n`` seconds plus the
policy's ``base_delay_s`` floor:

    max_retries=3, base_delay_s=1.0  ->  3s, 5s, 9s

Total attempts are ``max_retries + 1``. Non-retryable errors propagate on
first occurrence without consuming a retry. On exhaustion the last error is
re-raised unchanged so callers observe the original failure kind.

The classification predicate and the sleep function are injectable, so each
facade can decide what is retryable and tests can run without real delays.

Usage:
    from fhirrag_sdk.core.retry import RetryPolicy

    policy = RetryPolicy(max_retries=3, base_delay_s=2.0, name="bedrock")
    body = await policy.execute(lambda: invoke(...), ctx=ctx)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

from fhirrag_sdk.core.cancellation import Sleeper
from fhirrag_sdk.core.context import OperationContext
from fhirrag_sdk.core.errors import Cancelled, DeadlineExceeded, is_retryable

__all__ = ["RetryPolicy", "RetryStats"]

LOG = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryStats:
    """
    Statistics about one ``execute`` run.

    Attributes:
        attempts: Number of attempts made (including the successful one)
        total_delay: Total time spent waiting between retries (seconds)
        last_exception: The last exception seen before success or final failure
    """
    attempts: int
    total_delay: float
    last_exception: Optional[BaseException] = None


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration with exponential backoff.

    Attributes:
        max_retries:  Retries after the initial attempt (>= 0).
        base_delay_s: Constant floor added to every backoff delay.
        is_retryable: Predicate deciding if an exception is retried.
        sleeper:      Awaitable sleep used for backoff.
        on_retry:     Optional callback (attempt_no, delay_s, exc) before sleeping.
        name:         Label used in retry log records.
    """

    max_retries: int = 3
    base_delay_s: float = 1.0
    is_retryable: Callable[[BaseException], bool] = is_retryable
    sleeper: Sleeper = field(default=asyncio.sleep, compare=False)
    on_retry: Optional[Callable[[int, float, BaseException], None]] = field(default=None, compare=False)
    name: str = "remote"

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_s < 0:
            raise ValueError("base_delay_s must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry ``attempt`` (1-indexed), in seconds."""
        return float(2 ** attempt) + self.base_delay_s

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        ctx: Optional[OperationContext] = None,
    ) -> T:
        result, _ = await self.execute_with_stats(operation, ctx=ctx)
        return result

    async def execute_with_stats(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        ctx: Optional[OperationContext] = None,
    ) -> Tuple[T, RetryStats]:
        """
        Run ``operation`` until it succeeds, fails non-retryably or retries run out.

        Raises:
            Cancelled: the context's token fired before an attempt or during backoff.
            DeadlineExceeded: ``ctx.deadline_ms`` elapsed before an attempt.
            The operation's own exception otherwise.
        """
        token = ctx.cancellation if ctx is not None else None
        total_delay = 0.0
        last_exc: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            if token is not None:
                token.raise_if_cancelled()
            _check_deadline(ctx)

            try:
                result = await operation()
                return result, RetryStats(attempt, total_delay, last_exc)
            except (Cancelled, DeadlineExceeded):
                raise
            except Exception as exc:
                last_exc = exc
                if not self.is_retryable(exc) or attempt > self.max_retries:
                    raise

                delay = self.delay_for(attempt)
                LOG.warning(
                    "retry %d/%d after %dms",
                    attempt,
                    self.max_retries,
                    int(delay * 1000),
                    extra={
                        "retry_policy": self.name,
                        "attempt": attempt,
                        "delay_ms": int(delay * 1000),
                        "error_code": getattr(exc, "code", None) or type(exc).__name__,
                        "request_id": ctx.request_id if ctx is not None else None,
                    },
                )
                if self.on_retry is not None:
                    try:
                        self.on_retry(attempt, delay, exc)
                    except Exception:
                        LOG.debug("on_retry callback failed", exc_info=True)

                if token is not None:
                    await token.sleep(delay, sleeper=self.sleeper)
                else:
                    await self.sleeper(delay)
                total_delay += delay

        # Unreachable: the loop either returns or raises.
        raise RuntimeError("retry loop exited without result")  # pragma: no cover

    def with_overrides(self, **changes: Any) -> "RetryPolicy":
        return replace(self, **changes)


def _check_deadline(ctx: Optional[OperationContext]) -> None:
    if ctx is not None and ctx.deadline_ms is not None:
        if int(time.time() * 1000) >= ctx.deadline_ms:
            raise DeadlineExceeded(
                "deadline already exceeded",
                details={"remaining_ms": 0},
            )
