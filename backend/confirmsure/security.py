"""Security helpers (principals, tenant-scoped authorization, query scoping)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from .domain_errors import AuthenticationError, AuthorizationError, NotFoundError
from .permissions import Role, is_admin, role_has_permission

DENY_INACTIVE_ACCOUNT = "inactive_account"
DENY_INSUFFICIENT_PERMISSION = "insufficient_permission"
DENY_TENANT_MISMATCH = "tenant_mismatch"


@dataclass(frozen=True)
class Principal:
    """Authenticated actor derived from a user profile."""

    user_id: UUID
    role: str
    factory_id: UUID | None
    is_active: bool = True
    email: str | None = None
    full_name: str | None = None

    @classmethod
    def from_user(cls, user: Any) -> "Principal":
        role = user.role.value if isinstance(user.role, Role) else user.role
        return cls(
            user_id=user.id,
            role=role,
            factory_id=None if is_admin(role) else user.factory_id,
            is_active=bool(user.is_active),
            email=getattr(user, "email", None),
            full_name=getattr(user, "full_name", None),
        )

    @property
    def is_admin(self) -> bool:
        return is_admin(self.role)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = AccessDecision(allowed=True)


def authorize(principal: Principal, permission: str, resource_factory_id: UUID | None) -> AccessDecision:
    """Decide whether `principal` may exercise `permission` on a factory's resource.

    Checks run in a fixed order: activity, role permission, admin scope, tenant.
    The decision is pure; callers own any audit logging.
    """
    if not principal.is_active:
        return AccessDecision(allowed=False, reason=DENY_INACTIVE_ACCOUNT)
    if not role_has_permission(principal.role, permission):
        return AccessDecision(allowed=False, reason=DENY_INSUFFICIENT_PERMISSION)
    if principal.is_admin:
        return ALLOW
    if principal.factory_id is None or resource_factory_id != principal.factory_id:
        return AccessDecision(allowed=False, reason=DENY_TENANT_MISMATCH)
    return ALLOW


def ensure_authorized(
    principal: Principal,
    permission: str,
    resource_factory_id: UUID | None,
    *,
    existing_resource: bool = True,
) -> None:
    """Raise the domain error matching a denied decision.

    A tenant mismatch on an existing resource is reported as 404 so that other
    factories' resources are indistinguishable from missing ones.
    """
    decision = authorize(principal, permission, resource_factory_id)
    if decision.allowed:
        return
    if decision.reason == DENY_INACTIVE_ACCOUNT:
        raise AuthenticationError()
    if decision.reason == DENY_INSUFFICIENT_PERMISSION:
        raise AuthorizationError()
    if existing_resource:
        raise NotFoundError()
    raise AuthorizationError("Access denied", code="ACCESS_DENIED")


def require_permission(principal: Principal, permission: str) -> None:
    """Enforce a role permission without a tenant dimension."""
    if not principal.is_active:
        raise AuthenticationError()
    if not role_has_permission(principal.role, permission):
        raise AuthorizationError()


def apply_factory_scope(query: Any, principal: Principal, column: Any):
    """Restrict a SQLAlchemy query to the principal's factory unless admin."""
    if principal.is_admin:
        return query
    return query.filter(column == principal.factory_id)
