# fhirrag_sdk/health.py
# SPDX-License-Identifier: Apache-2.0
"""Aggregated health report across the infrastructure facades."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from fhirrag_sdk.core.context import OperationContext, system_context

__all__ = ["HealthCheck", "check_health", "service_checks"]

HealthCheck = Callable[..., Awaitable[Mapping[str, Any]]]


def service_checks(services: Any) -> Dict[str, HealthCheck]:
    """Named checks for an :class:`InfrastructureServices` bundle."""
    return {
        "bedrock-llm": services.llm.health,
        "aws-storage": services.storage.health,
        "lambda-orchestration": services.orchestration.health,
    }


async def check_health(
    checks: Mapping[str, HealthCheck],
    *,
    ctx: Optional[OperationContext] = None,
    timeout_s: float = 30.0,
) -> Dict[str, Any]:
    """
    Run all checks concurrently.

    A check that raises or exceeds ``timeout_s`` is reported unhealthy; the
    overall ``ok`` is true only when every check is.
    """
    ctx = ctx or system_context(request_id="health")

    async def _run(name: str, check: HealthCheck) -> Dict[str, Any]:
        t0 = time.monotonic()
        try:
            report = dict(await asyncio.wait_for(check(ctx=ctx), timeout=timeout_s))
        except asyncio.TimeoutError:
            report = {"ok": False, "error": "TIMEOUT"}
        except Exception as e:  # reported, not raised
            report = {"ok": False, "error": getattr(e, "code", None) or type(e).__name__}
        report.setdefault("elapsed_ms", int((time.monotonic() - t0) * 1000))
        return report

    names = list(checks)
    reports = await asyncio.gather(*(_run(n, checks[n]) for n in names))
    components = dict(zip(names, reports))
    return {
        "ok": all(r.get("ok") for r in components.values()),
        "components": components,
    }
