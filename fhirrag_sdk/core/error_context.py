# fhirrag_sdk/core/error_context.py
# SPDX-License-Identifier: Apache-2.0
"""
Debug context attached to exceptions as they leave a facade.

Context is stored as exception attributes rather than in the message so the
original exception type, message and traceback propagate unchanged:

    try:
        await storage.store(key, data, ctx=ctx)
    except Exception as exc:
        ctx_info = get_context(exc)
        LOG.error("store failed", extra={"operation": ctx_info.get("operation")})

Two attributes are set: ``__fhirrag_context__`` (canonical) and
``__<component>_context__`` (component-specific, e.g. ``__storage_context__``).
Repeated calls merge; the first ``component`` recorded wins.

Never pass raw tenant ids, keys with PHI, or payloads as context values.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional

__all__ = ["attach_context", "get_context"]

logger = logging.getLogger(__name__)

_CANONICAL_ATTR = "__fhirrag_context__"


def attach_context(exc: BaseException, component: str, **context: Any) -> None:
    """
    Merge ``context`` into the exception's attached context.

    Attachment is best-effort: failures are logged at debug level and never
    replace the original exception.
    """
    try:
        merged: MutableMapping[str, Any] = {}
        existing = getattr(exc, _CANONICAL_ATTR, None)
        if isinstance(existing, Mapping):
            merged.update(existing)

        merged.setdefault("component", component)
        merged.update(context)

        setattr(exc, _CANONICAL_ATTR, merged)
        setattr(exc, f"__{component}_context__", merged)
    except Exception as attachment_error:  # noqa: BLE001
        logger.debug(
            "Failed to attach error context to %s: %s",
            type(exc).__name__,
            attachment_error,
            extra={"component": component},
        )


def get_context(exc: BaseException, *, component: Optional[str] = None) -> Mapping[str, Any]:
    """Return attached context (component-specific first), or an empty dict."""
    if component:
        specific = getattr(exc, f"__{component}_context__", None)
        if isinstance(specific, Mapping):
            return specific
    canonical = getattr(exc, _CANONICAL_ATTR, None)
    return canonical if isinstance(canonical, Mapping) else {}
