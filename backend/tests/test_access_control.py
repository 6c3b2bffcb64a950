from __future__ import annotations

from uuid import uuid4

import pytest

from confirmsure.domain_errors import AuthenticationError, AuthorizationError, NotFoundError
from confirmsure.permissions import ANALYTICS_READ, PRODUCTS_DELETE, PRODUCTS_READ
from confirmsure.security import (
    DENY_INACTIVE_ACCOUNT,
    DENY_INSUFFICIENT_PERMISSION,
    DENY_TENANT_MISMATCH,
    Principal,
    authorize,
    ensure_authorized,
)

F1 = uuid4()
F2 = uuid4()


def _principal(role: str, factory_id=F1, *, is_active: bool = True) -> Principal:
    return Principal(user_id=uuid4(), role=role, factory_id=factory_id, is_active=is_active)


def test_operator_reads_own_factory() -> None:
    assert authorize(_principal("factory_operator"), PRODUCTS_READ, F1).allowed


def test_operator_denied_other_factory() -> None:
    decision = authorize(_principal("factory_operator"), PRODUCTS_READ, F2)

    assert not decision.allowed
    assert decision.reason == DENY_TENANT_MISMATCH


def test_admin_bypasses_tenant_check() -> None:
    admin = _principal("admin", factory_id=None)

    assert authorize(admin, PRODUCTS_READ, F1)
    assert authorize(admin, PRODUCTS_READ, F2)


def test_inactive_checked_before_permission() -> None:
    principal = _principal("factory_operator", is_active=False)

    decision = authorize(principal, ANALYTICS_READ, F2)

    assert decision.reason == DENY_INACTIVE_ACCOUNT


def test_inactive_admin_is_denied() -> None:
    decision = authorize(_principal("admin", factory_id=None, is_active=False), PRODUCTS_READ, F1)

    assert decision.reason == DENY_INACTIVE_ACCOUNT


def test_permission_checked_before_tenant() -> None:
    decision = authorize(_principal("factory_operator"), ANALYTICS_READ, F2)

    assert decision.reason == DENY_INSUFFICIENT_PERMISSION


def test_factory_user_without_factory_is_denied() -> None:
    decision = authorize(_principal("factory_manager", factory_id=None), PRODUCTS_READ, None)

    assert decision.reason == DENY_TENANT_MISMATCH


def test_principal_from_admin_profile_drops_factory() -> None:
    class _User:
        id = uuid4()
        role = "admin"
        factory_id = F1
        is_active = True
        email = "root@example.com"
        full_name = "Root"

    principal = Principal.from_user(_User())

    assert principal.factory_id is None
    assert principal.is_admin


@pytest.mark.parametrize(
    ("principal", "permission", "resource", "existing", "expected"),
    [
        (_principal("factory_operator", is_active=False), PRODUCTS_READ, F1, True, AuthenticationError),
        (_principal("factory_operator"), PRODUCTS_DELETE, F1, True, AuthorizationError),
        (_principal("factory_operator"), PRODUCTS_READ, F2, True, NotFoundError),
        (_principal("factory_operator"), PRODUCTS_READ, F2, False, AuthorizationError),
    ],
)
def test_ensure_authorized_maps_denials(principal, permission, resource, existing, expected) -> None:
    with pytest.raises(expected) as exc:
        ensure_authorized(principal, permission, resource, existing_resource=existing)

    assert exc.value.http_status in (401, 403, 404)


def test_cross_tenant_create_is_access_denied() -> None:
    with pytest.raises(AuthorizationError) as exc:
        ensure_authorized(_principal("factory_operator"), PRODUCTS_READ, F2, existing_resource=False)

    assert exc.value.code == "ACCESS_DENIED"
    assert exc.value.message == "Access denied"
