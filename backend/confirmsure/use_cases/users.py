"""User administration use-cases."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import hash_password, validate_password_policy
from ..client_info import NO_CLIENT, ClientInfo
from ..domain_errors import ConflictError, NotFoundError, ValidationError
from ..models import Factory, UserProfile
from ..permissions import USERS_CREATE, USERS_DELETE, USERS_READ, USERS_UPDATE, is_admin
from ..schemas import UserCreate, UserRoleUpdate
from ..security import Principal, apply_factory_scope, ensure_authorized, require_permission
from ..services.audit import record_audit_event


def _resolve_assignment(db: Session, role: str, factory_id: UUID | None) -> UUID | None:
    """Admins belong to no factory; every other role must belong to an existing one."""
    if is_admin(role):
        return None
    if factory_id is None:
        raise ValidationError(
            "Factory assignment required for this role",
            errors=[{"field": "factory_id", "message": "Factory assignment required for this role"}],
        )
    if db.query(Factory.id).filter(Factory.id == factory_id).first() is None:
        raise NotFoundError("Factory not found", code="FACTORY_NOT_FOUND")
    return factory_id


def _load_user(db: Session, user_id: UUID) -> UserProfile:
    user = db.query(UserProfile).filter(UserProfile.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


def create_user_use_case(
    *,
    db: Session,
    principal: Principal,
    data: UserCreate,
    client: ClientInfo = NO_CLIENT,
) -> UserProfile:
    require_permission(principal, USERS_CREATE)
    email = data.email.strip().lower()
    validate_password_policy(data.password, email=email)
    factory_id = _resolve_assignment(db, data.role, data.factory_id)

    if db.query(UserProfile.id).filter(UserProfile.email == email).first() is not None:
        raise ConflictError("A user with this email already exists", code="EMAIL_TAKEN")

    user = UserProfile(
        email=email,
        password_hash=hash_password(data.password),
        full_name=data.full_name.strip(),
        role=data.role,
        factory_id=factory_id,
        is_active=True,
        created_by=principal.user_id,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("A user with this email already exists", code="EMAIL_TAKEN")
    db.refresh(user)

    record_audit_event(
        db,
        event_type="user",
        event_name="USER_CREATED",
        user_id=principal.user_id,
        resource_type="user",
        resource_id=user.id,
        metadata={"email": user.email, "role": user.role, "factory_id": str(factory_id) if factory_id else None},
        client=client,
    )
    return user


def list_users_use_case(
    *,
    db: Session,
    principal: Principal,
    role: str | None = None,
    factory_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    require_permission(principal, USERS_READ)
    query = apply_factory_scope(db.query(UserProfile), principal, UserProfile.factory_id)
    if principal.is_admin and factory_id is not None:
        query = query.filter(UserProfile.factory_id == factory_id)
    if role:
        query = query.filter(UserProfile.role == role)
    total = query.count()
    items = query.order_by(UserProfile.created_at.desc(), UserProfile.email.asc()).offset(offset).limit(limit).all()
    return {"items": items, "total": total, "limit": limit, "offset": offset}


def update_user_role_use_case(
    *,
    db: Session,
    principal: Principal,
    user_id: UUID,
    data: UserRoleUpdate,
    client: ClientInfo = NO_CLIENT,
) -> UserProfile:
    require_permission(principal, USERS_UPDATE)
    user = _load_user(db, user_id)
    ensure_authorized(principal, USERS_UPDATE, user.factory_id)
    if user.id == principal.user_id:
        raise ConflictError("You cannot change your own role", code="SELF_ROLE_CHANGE")

    factory_id = _resolve_assignment(db, data.role, data.factory_id or user.factory_id)
    previous = {"role": user.role, "factory_id": str(user.factory_id) if user.factory_id else None}
    user.role = data.role
    user.factory_id = factory_id
    db.commit()
    db.refresh(user)

    record_audit_event(
        db,
        event_type="user",
        event_name="ROLE_UPDATED",
        user_id=principal.user_id,
        resource_type="user",
        resource_id=user.id,
        metadata={
            "previous": previous,
            "role": user.role,
            "factory_id": str(user.factory_id) if user.factory_id else None,
        },
        client=client,
    )
    return user


def deactivate_user_use_case(
    *,
    db: Session,
    principal: Principal,
    user_id: UUID,
    client: ClientInfo = NO_CLIENT,
) -> UserProfile:
    require_permission(principal, USERS_DELETE)
    user = _load_user(db, user_id)
    ensure_authorized(principal, USERS_DELETE, user.factory_id)
    if user.id == principal.user_id:
        raise ConflictError("You cannot deactivate your own account", code="SELF_DEACTIVATION")
    if not user.is_active:
        return user

    user.is_active = False
    db.commit()
    db.refresh(user)

    record_audit_event(
        db,
        event_type="user",
        event_name="USER_DEACTIVATED",
        user_id=principal.user_id,
        resource_type="user",
        resource_id=user.id,
        metadata={"email": user.email},
        client=client,
    )
    return user
