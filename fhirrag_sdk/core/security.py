# fhirrag_sdk/core/security.py
# SPDX-License-Identifier: Apache-2.0
"""
Caller identity for tenant-scoped infrastructure operations.

A :class:`SecurityContext` is created once per authenticated request by an
external authentication layer and is immutable thereafter. It is passed
explicitly to every facade operation (via ``OperationContext.security``);
there is no ambient or global lookup.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Protocol

__all__ = [
    "SecurityContext",
    "SecurityContextProvider",
    "StaticSecurityContextProvider",
    "tenant_hash",
]


def tenant_hash(tenant_id: Optional[str]) -> Optional[str]:
    """
    Hash a tenant id for metrics/logging.

    Raw tenant identifiers MUST NEVER be emitted.
    """
    if not tenant_id:
        return None
    return hashlib.sha256(tenant_id.encode()).hexdigest()[:12]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fold(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(v.casefold() for v in values if v)


@dataclass(frozen=True)
class SecurityContext:
    """
    Identity of the calling principal.

    Permission and role lookups are case-insensitive. A system user
    implicitly holds every permission. ``expires_at=None`` never expires.
    """

    user_id: str = ""
    tenant_id: str = ""
    permissions: FrozenSet[str] = frozenset()
    roles: FrozenSet[str] = frozenset()
    is_system_user: bool = False
    is_authenticated: bool = False
    authenticated_at: datetime = field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None
    session_id: str = ""
    ip_address: str = ""
    user_agent: str = ""
    claims: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "permissions", frozenset(self.permissions or ()))
        object.__setattr__(self, "roles", frozenset(self.roles or ()))
        object.__setattr__(self, "claims", dict(self.claims or {}))

    def has_permission(self, permission: str) -> bool:
        if self.is_system_user:
            return True
        return bool(permission) and permission.casefold() in _fold(self.permissions)

    def has_any_permission(self, *permissions: str) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, *permissions: str) -> bool:
        return all(self.has_permission(p) for p in permissions)

    def has_role(self, role: str) -> bool:
        return bool(role) and role.casefold() in _fold(self.roles)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or _utcnow()
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires < now

    def get_claim(self, name: str) -> Optional[str]:
        return self.claims.get(name)

    def get_permissions(self) -> FrozenSet[str]:
        return frozenset(self.permissions)

    def get_roles(self) -> FrozenSet[str]:
        return frozenset(self.roles)

    def tenant_hash(self) -> Optional[str]:
        return tenant_hash(self.tenant_id)

    def to_log_dict(self) -> Dict[str, Any]:
        """SIEM-safe summary: no raw tenant, user or session identifiers."""
        return {
            "tenant": self.tenant_hash(),
            "authenticated": self.is_authenticated,
            "system_user": self.is_system_user,
            "expired": self.is_expired(),
        }


class SecurityContextProvider(Protocol):
    """Supplies the calling identity for the current logical operation."""

    def current(self) -> Optional[SecurityContext]:
        ...


class StaticSecurityContextProvider:
    """Provider that always returns the same context (service accounts, tests)."""

    def __init__(self, context: Optional[SecurityContext]) -> None:
        self._context = context

    def current(self) -> Optional[SecurityContext]:
        return self._context
