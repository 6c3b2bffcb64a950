"""Role and permission catalog.

Every role maps to an explicitly enumerated, immutable permission set. Nothing
is inherited or computed at check time: the admin set is the full catalog,
enumerated once at import.
"""
from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping


class Role(str, Enum):
    ADMIN = "admin"
    FACTORY_MANAGER = "factory_manager"
    FACTORY_OPERATOR = "factory_operator"


ROLE_VALUES: tuple[str, ...] = tuple(role.value for role in Role)
FACTORY_ROLES: frozenset[str] = frozenset({Role.FACTORY_MANAGER.value, Role.FACTORY_OPERATOR.value})


PRODUCTS_CREATE = "products:create"
PRODUCTS_READ = "products:read"
PRODUCTS_UPDATE = "products:update"
PRODUCTS_DELETE = "products:delete"
FACTORIES_CREATE = "factories:create"
FACTORIES_READ = "factories:read"
FACTORIES_UPDATE = "factories:update"
FACTORIES_DELETE = "factories:delete"
USERS_CREATE = "users:create"
USERS_READ = "users:read"
USERS_UPDATE = "users:update"
USERS_DELETE = "users:delete"
ANALYTICS_READ = "analytics:read"

_CRUD = ("create", "read", "update", "delete")

# resource -> actions that exist for it
PERMISSION_RESOURCES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "products": _CRUD,
        "factories": _CRUD,
        "users": _CRUD,
        "analytics": ("read",),
    }
)

PERMISSION_CATALOG: frozenset[str] = frozenset(
    f"{resource}:{action}"
    for resource, actions in PERMISSION_RESOURCES.items()
    for action in actions
)


ROLE_PERMISSIONS: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        Role.ADMIN.value: PERMISSION_CATALOG,
        Role.FACTORY_MANAGER.value: frozenset(
            {
                PRODUCTS_CREATE,
                PRODUCTS_READ,
                PRODUCTS_UPDATE,
                PRODUCTS_DELETE,
                FACTORIES_READ,
                FACTORIES_UPDATE,
                USERS_READ,
                ANALYTICS_READ,
            }
        ),
        Role.FACTORY_OPERATOR.value: frozenset(
            {
                PRODUCTS_CREATE,
                PRODUCTS_READ,
                PRODUCTS_UPDATE,
            }
        ),
    }
)


def _role_key(role: Role | str | None) -> str | None:
    if isinstance(role, Role):
        return role.value
    return role


def permissions_for(role: Role | str | None) -> frozenset[str]:
    """Return the static permission set for a role; unknown roles get nothing."""
    return ROLE_PERMISSIONS.get(_role_key(role), frozenset())


def role_has_permission(role: Role | str | None, permission: str) -> bool:
    return permission in permissions_for(role)


def is_admin(role: Role | str | None) -> bool:
    return _role_key(role) == Role.ADMIN.value


def validate_permission_references(
    *,
    permissions: Iterable[str] = (),
    roles: Iterable[str] = (),
    source: str = "configuration",
) -> None:
    """Fail closed when a table references a permission or role that does not exist.

    A typo in a route table would otherwise grant the route to nobody without
    anyone noticing.
    """
    unknown_permissions = sorted(set(permissions) - PERMISSION_CATALOG)
    unknown_roles = sorted(set(roles) - set(ROLE_VALUES))
    problems = []
    if unknown_permissions:
        problems.append(f"unknown permissions {unknown_permissions}")
    if unknown_roles:
        problems.append(f"unknown roles {unknown_roles}")
    if problems:
        raise RuntimeError(f"Invalid {source}: " + "; ".join(problems))
