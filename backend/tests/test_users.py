from __future__ import annotations

from uuid import uuid4

import pytest

from conftest import make_user
from confirmsure.auth import validate_password_policy, verify_password
from confirmsure.domain_errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from confirmsure.models import AuditLog, UserProfile
from confirmsure.schemas import UserCreate, UserRoleUpdate
from confirmsure.use_cases.users import (
    create_user_use_case,
    deactivate_user_use_case,
    list_users_use_case,
    update_user_role_use_case,
)

STRONG_PASSWORD = "Sup3r-Secret!"


@pytest.mark.parametrize(
    ("password", "message"),
    [
        ("Sh0rt!", "at least 8 characters"),
        ("alllowercase1!", "uppercase"),
        ("ALLUPPERCASE1!", "lowercase"),
        ("NoDigitsHere!", "number"),
        ("NoSpecial123", "special character"),
    ],
)
def test_password_policy_rejections(password: str, message: str) -> None:
    with pytest.raises(ValidationError) as exc:
        validate_password_policy(password)

    assert any(message in error["message"] for error in exc.value.details["errors"])


def test_password_policy_accepts_strong_password() -> None:
    validate_password_policy(STRONG_PASSWORD, email="someone@example.com")


def test_admin_creates_operator_for_factory(db, admin, factory_one) -> None:
    user = create_user_use_case(
        db=db,
        principal=admin,
        data=UserCreate(
            email="New.Operator@Example.com",
            password=STRONG_PASSWORD,
            full_name="New Operator",
            role="factory_operator",
            factory_id=factory_one.id,
        ),
    )

    assert user.email == "new.operator@example.com"
    assert user.factory_id == factory_one.id
    assert user.created_by == admin.user_id
    assert verify_password(STRONG_PASSWORD, user.password_hash)
    assert db.query(AuditLog).filter(AuditLog.event_name == "USER_CREATED").count() == 1


def test_factory_roles_need_a_factory(db, admin) -> None:
    with pytest.raises(ValidationError, match="Factory assignment required"):
        create_user_use_case(
            db=db,
            principal=admin,
            data=UserCreate(
                email="floating@example.com",
                password=STRONG_PASSWORD,
                full_name="Floating User",
                role="factory_manager",
            ),
        )


def test_admins_are_never_assigned_a_factory(db, admin, factory_one) -> None:
    user = create_user_use_case(
        db=db,
        principal=admin,
        data=UserCreate(
            email="second.admin@example.com",
            password=STRONG_PASSWORD,
            full_name="Second Admin",
            role="admin",
            factory_id=factory_one.id,
        ),
    )

    assert user.factory_id is None


def test_duplicate_email_is_conflict(db, admin, factory_one) -> None:
    make_user(db, "taken@example.com", "factory_operator", factory_one)

    with pytest.raises(ConflictError) as exc:
        create_user_use_case(
            db=db,
            principal=admin,
            data=UserCreate(
                email="Taken@example.com",
                password=STRONG_PASSWORD,
                full_name="Copy Cat",
                role="factory_operator",
                factory_id=factory_one.id,
            ),
        )

    assert exc.value.code == "EMAIL_TAKEN"


def test_manager_cannot_create_users(db, manager_one, factory_one) -> None:
    with pytest.raises(AuthorizationError):
        create_user_use_case(
            db=db,
            principal=manager_one,
            data=UserCreate(
                email="sneaky@example.com",
                password=STRONG_PASSWORD,
                full_name="Sneaky User",
                role="factory_operator",
                factory_id=factory_one.id,
            ),
        )


def test_manager_lists_only_own_factory_users(db, admin, manager_one, operator_one, operator_two) -> None:
    own = list_users_use_case(db=db, principal=manager_one)
    everyone = list_users_use_case(db=db, principal=admin)

    assert {u.id for u in own["items"]} == {manager_one.user_id, operator_one.user_id}
    assert everyone["total"] == 4


def test_role_change_moves_user_and_audits(db, admin, operator_one, factory_two) -> None:
    user = update_user_role_use_case(
        db=db,
        principal=admin,
        user_id=operator_one.user_id,
        data=UserRoleUpdate(role="factory_manager", factory_id=factory_two.id),
    )

    assert user.role == "factory_manager"
    assert user.factory_id == factory_two.id
    audit = db.query(AuditLog).filter(AuditLog.event_name == "ROLE_UPDATED").one()
    assert audit.meta_data["previous"]["role"] == "factory_operator"


def test_promoting_to_admin_clears_factory(db, admin, operator_one) -> None:
    user = update_user_role_use_case(
        db=db,
        principal=admin,
        user_id=operator_one.user_id,
        data=UserRoleUpdate(role="admin"),
    )

    assert user.factory_id is None


def test_admin_cannot_change_own_role(db, admin) -> None:
    with pytest.raises(ConflictError) as exc:
        update_user_role_use_case(
            db=db,
            principal=admin,
            user_id=admin.user_id,
            data=UserRoleUpdate(role="factory_manager"),
        )

    assert exc.value.code == "SELF_ROLE_CHANGE"


def test_deactivate_user(db, admin, operator_one) -> None:
    user = deactivate_user_use_case(db=db, principal=admin, user_id=operator_one.user_id)

    assert user.is_active is False
    assert db.query(AuditLog).filter(AuditLog.event_name == "USER_DEACTIVATED").count() == 1
    deactivate_user_use_case(db=db, principal=admin, user_id=operator_one.user_id)
    assert db.query(AuditLog).filter(AuditLog.event_name == "USER_DEACTIVATED").count() == 1


def test_cannot_deactivate_self(db, admin) -> None:
    with pytest.raises(ConflictError):
        deactivate_user_use_case(db=db, principal=admin, user_id=admin.user_id)


def test_unknown_user_is_not_found(db, admin) -> None:
    with pytest.raises(NotFoundError):
        deactivate_user_use_case(db=db, principal=admin, user_id=uuid4())
    assert db.query(UserProfile).count() == 1
