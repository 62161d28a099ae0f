# fhirrag_sdk/telemetry/persistence.py
# SPDX-License-Identifier: Apache-2.0
"""Persist finished telemetry sessions through the tenant-scoped storage facade."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fhirrag_sdk.core.context import OperationContext
from fhirrag_sdk.core.errors import InvalidArgument
from fhirrag_sdk.storage.aws_storage import AwsStorageService
from fhirrag_sdk.telemetry.models import TelemetryContext

__all__ = ["telemetry_storage_key", "save_session", "load_session"]


def telemetry_storage_key(session_id: str) -> str:
    return f"telemetry/{session_id}.json"


async def save_session(
    storage: AwsStorageService,
    session: TelemetryContext,
    *,
    ctx: OperationContext,
) -> bool:
    """
    Store ``session.to_dict()`` under ``telemetry/{session_id}.json``.

    Sessions with ``enable_s3_storage=False`` are skipped (returns ``False``).
    The session must belong to the caller's tenant.
    """
    if not session.enable_s3_storage:
        return False
    if session.tenant_id and ctx.tenant_id and session.tenant_id != ctx.tenant_id:
        raise InvalidArgument("telemetry session belongs to another tenant", field="tenant_id")
    metrics = session.get_metrics()
    return await storage.store_json(
        telemetry_storage_key(session.session_id),
        session.to_dict(),
        ctx=ctx,
        metadata={
            "resource_type": session.resource_type,
            "performance_rating": str(metrics.get_performance_rating()),
        },
    )


async def load_session(
    storage: AwsStorageService,
    session_id: str,
    *,
    ctx: OperationContext,
) -> Optional[Dict[str, Any]]:
    """Return the stored session snapshot, or ``None``."""
    return await storage.retrieve_json(telemetry_storage_key(session_id), ctx=ctx)
