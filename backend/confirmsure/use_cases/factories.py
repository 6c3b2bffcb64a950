"""Factory (tenant) use-cases."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..client_info import NO_CLIENT, ClientInfo
from ..domain_errors import ConflictError, NotFoundError
from ..models import Factory
from ..permissions import FACTORIES_CREATE, FACTORIES_READ, FACTORIES_UPDATE
from ..schemas import FactoryCreate, FactoryUpdate
from ..security import Principal, apply_factory_scope, ensure_authorized, require_permission
from ..services.audit import record_audit_event


def _name_taken(db: Session, name: str, *, exclude_id: UUID | None = None) -> bool:
    query = db.query(Factory.id).filter(Factory.name == name)
    if exclude_id is not None:
        query = query.filter(Factory.id != exclude_id)
    return query.first() is not None


def create_factory_use_case(
    *,
    db: Session,
    principal: Principal,
    data: FactoryCreate,
    client: ClientInfo = NO_CLIENT,
) -> Factory:
    require_permission(principal, FACTORIES_CREATE)
    if _name_taken(db, data.name):
        raise ConflictError("Factory name already exists", code="FACTORY_NAME_TAKEN")

    factory = Factory(**data.model_dump())
    db.add(factory)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Factory name already exists", code="FACTORY_NAME_TAKEN")
    db.refresh(factory)

    record_audit_event(
        db,
        event_type="factory",
        event_name="FACTORY_CREATED",
        user_id=principal.user_id,
        resource_type="factory",
        resource_id=factory.id,
        metadata={"name": factory.name, "location": factory.location},
        client=client,
    )
    return factory


def list_factories_use_case(
    *,
    db: Session,
    principal: Principal,
    include_inactive: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    require_permission(principal, FACTORIES_READ)
    query = apply_factory_scope(db.query(Factory), principal, Factory.id)
    if not include_inactive:
        query = query.filter(Factory.is_active.is_(True))
    total = query.count()
    items = query.order_by(Factory.name.asc()).offset(offset).limit(limit).all()
    return {"items": items, "total": total, "limit": limit, "offset": offset}


def get_factory_use_case(*, db: Session, principal: Principal, factory_id: UUID) -> Factory:
    require_permission(principal, FACTORIES_READ)
    factory = db.query(Factory).filter(Factory.id == factory_id).first()
    if factory is None:
        raise NotFoundError("Factory not found", code="FACTORY_NOT_FOUND")
    ensure_authorized(principal, FACTORIES_READ, factory.id)
    return factory


def update_factory_use_case(
    *,
    db: Session,
    principal: Principal,
    factory_id: UUID,
    data: FactoryUpdate,
    client: ClientInfo = NO_CLIENT,
) -> Factory:
    require_permission(principal, FACTORIES_UPDATE)
    factory = db.query(Factory).filter(Factory.id == factory_id).first()
    if factory is None:
        raise NotFoundError("Factory not found", code="FACTORY_NOT_FOUND")
    ensure_authorized(principal, FACTORIES_UPDATE, factory.id)

    changes = data.model_dump(exclude_unset=True)
    if "name" in changes and _name_taken(db, changes["name"], exclude_id=factory.id):
        raise ConflictError("Factory name already exists", code="FACTORY_NAME_TAKEN")

    for field, value in changes.items():
        setattr(factory, field, value)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Factory name already exists", code="FACTORY_NAME_TAKEN")
    db.refresh(factory)

    record_audit_event(
        db,
        event_type="factory",
        event_name="FACTORY_UPDATED",
        user_id=principal.user_id,
        resource_type="factory",
        resource_id=factory.id,
        metadata={"fields": sorted(changes)},
        client=client,
    )
    return factory
