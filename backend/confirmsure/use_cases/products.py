"""Product use-cases: creation with QR identity, listing, updates and lifecycle."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..client_info import NO_CLIENT, ClientInfo
from ..domain_errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..models import Factory, Product
from ..permissions import PRODUCTS_CREATE, PRODUCTS_DELETE, PRODUCTS_READ, PRODUCTS_UPDATE, Role
from ..schemas import ProductCreate, ProductFilters, ProductUpdate
from ..security import Principal, apply_factory_scope, ensure_authorized, require_permission
from ..services.audit import record_audit_event
from ..services.qr_identity import CandidateTaken, draw_candidate, generate_unique, qr_code_exists

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_qr_conflict(exc: IntegrityError) -> bool:
    # Covers both the PostgreSQL constraint name and the SQLite column reference.
    return "qr_code" in str(exc.orig)


def insert_product_with_unique_qr(
    db: Session,
    *,
    values: dict[str, Any],
    draw: Callable[[], str] = draw_candidate,
    max_attempts: int | None = None,
) -> Product:
    """Draw a QR identity and insert the product under the unique constraint.

    A unique violation on ``qr_code`` at commit time means another request won
    the candidate; the whole draw-check-insert cycle is retried within the
    same attempt budget. Nothing is persisted for a failed attempt.
    """

    def claim(code: str) -> Product:
        product = Product(qr_code=code, **values)
        db.add(product)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if _is_qr_conflict(exc):
                raise CandidateTaken(code) from exc
            raise
        db.refresh(product)
        return product

    return generate_unique(draw, lambda code: qr_code_exists(db, code), claim, max_attempts=max_attempts)


def resolve_target_factory(db: Session, principal: Principal, requested: UUID | None) -> UUID:
    if principal.is_admin:
        if requested is None:
            raise ValidationError(
                "Factory ID is required",
                errors=[{"field": "factory_id", "message": "Factory ID is required"}],
            )
        if db.query(Factory.id).filter(Factory.id == requested).first() is None:
            raise NotFoundError("Factory not found", code="FACTORY_NOT_FOUND")
        return requested
    return requested if requested is not None else principal.factory_id


def create_product_use_case(
    *,
    db: Session,
    principal: Principal,
    data: ProductCreate,
    client: ClientInfo = NO_CLIENT,
    draw: Callable[[], str] = draw_candidate,
) -> Product:
    require_permission(principal, PRODUCTS_CREATE)
    factory_id = resolve_target_factory(db, principal, data.factory_id)
    ensure_authorized(principal, PRODUCTS_CREATE, factory_id, existing_resource=False)

    values = data.model_dump(exclude={"factory_id", "metadata"})
    values.update(
        factory_id=factory_id,
        created_by=principal.user_id,
        status="draft",
        meta_data=data.metadata or {},
    )
    product = insert_product_with_unique_qr(db, values=values, draw=draw)

    record_audit_event(
        db,
        event_type="product",
        event_name="PRODUCT_CREATED",
        user_id=principal.user_id,
        resource_type="product",
        resource_id=product.id,
        metadata={
            "product_name": product.product_name,
            "qr_code": product.qr_code,
            "factory_id": str(product.factory_id),
        },
        client=client,
    )
    logger.info("Product %s created with QR code %s", product.id, product.qr_code)
    return product


def load_product_for(db: Session, principal: Principal, product_id: UUID, permission: str) -> Product:
    """Load a product the principal may act on; other factories' products read as missing."""
    require_permission(principal, permission)
    product = db.query(Product).filter(Product.id == product_id).first()
    if product is None:
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
    ensure_authorized(principal, permission, product.factory_id)
    return product


def get_product_use_case(*, db: Session, principal: Principal, product_id: UUID) -> Product:
    return load_product_for(db, principal, product_id, PRODUCTS_READ)


def list_products_use_case(*, db: Session, principal: Principal, filters: ProductFilters) -> dict[str, Any]:
    require_permission(principal, PRODUCTS_READ)

    query = apply_factory_scope(db.query(Product), principal, Product.factory_id)
    # A client-supplied factory filter only means something for admins.
    if principal.is_admin and filters.factory_id is not None:
        query = query.filter(Product.factory_id == filters.factory_id)

    if filters.query:
        pattern = f"%{filters.query.strip()}%"
        query = query.filter(or_(Product.product_name.ilike(pattern), Product.qr_code.ilike(pattern)))
    if filters.status:
        query = query.filter(Product.status == filters.status)
    if filters.product_type:
        query = query.filter(Product.product_type == filters.product_type)
    if filters.batch_id:
        query = query.filter(Product.batch_id == filters.batch_id)
    if filters.date_from:
        query = query.filter(Product.created_at >= datetime.combine(filters.date_from, time.min, tzinfo=timezone.utc))
    if filters.date_to:
        end = datetime.combine(filters.date_to, time.min, tzinfo=timezone.utc) + timedelta(days=1)
        query = query.filter(Product.created_at < end)

    total = query.count()
    items = (
        query.order_by(Product.created_at.desc(), Product.id.desc())
        .offset(filters.offset)
        .limit(filters.limit)
        .all()
    )
    return {"items": items, "total": total, "limit": filters.limit, "offset": filters.offset}


def update_product_use_case(
    *,
    db: Session,
    principal: Principal,
    product_id: UUID,
    data: ProductUpdate,
    client: ClientInfo = NO_CLIENT,
) -> Product:
    product = load_product_for(db, principal, product_id, PRODUCTS_UPDATE)
    if product.status == "archived":
        raise ConflictError("Archived products cannot be modified", code="PRODUCT_ARCHIVED")

    changes = data.model_dump(exclude_unset=True)
    if "metadata" in changes:
        changes["meta_data"] = changes.pop("metadata") or {}

    manufacturing = changes.get("manufacturing_date", product.manufacturing_date)
    expiry = changes.get("expiry_date", product.expiry_date)
    if manufacturing and expiry and expiry <= manufacturing:
        raise ValidationError(
            "Expiry date must be after manufacturing date",
            errors=[{"field": "expiry_date", "message": "Expiry date must be after manufacturing date"}],
        )

    for field, value in changes.items():
        setattr(product, field, value)
    db.commit()
    db.refresh(product)

    record_audit_event(
        db,
        event_type="product",
        event_name="PRODUCT_UPDATED",
        user_id=principal.user_id,
        resource_type="product",
        resource_id=product.id,
        metadata={"fields": sorted(changes)},
        client=client,
    )
    return product


@dataclass(frozen=True)
class StatusTransition:
    sources: tuple[str, ...]
    target: str
    permission: str
    roles: frozenset[str] | None = None


PRODUCT_TRANSITIONS: dict[str, StatusTransition] = {
    "submit": StatusTransition(("draft",), "pending", PRODUCTS_UPDATE),
    "approve": StatusTransition(("pending",), "approved", PRODUCTS_UPDATE, frozenset({Role.ADMIN.value})),
    "reject": StatusTransition(("pending",), "draft", PRODUCTS_UPDATE, frozenset({Role.ADMIN.value})),
    "publish": StatusTransition(
        ("approved",),
        "published",
        PRODUCTS_UPDATE,
        frozenset({Role.ADMIN.value, Role.FACTORY_MANAGER.value}),
    ),
    "archive": StatusTransition(("draft", "pending", "approved", "published"), "archived", PRODUCTS_DELETE),
}


def transition_product_status_use_case(
    *,
    db: Session,
    principal: Principal,
    product_id: UUID,
    action: str,
    client: ClientInfo = NO_CLIENT,
) -> Product:
    transition = PRODUCT_TRANSITIONS.get(action)
    if transition is None:
        raise ValidationError(
            f"Unknown status action: {action}",
            errors=[{"field": "action", "message": f"must be one of {sorted(PRODUCT_TRANSITIONS)}"}],
        )

    product = load_product_for(db, principal, product_id, transition.permission)
    if transition.roles is not None and principal.role not in transition.roles:
        raise AuthorizationError()
    if product.status not in transition.sources:
        raise ConflictError(
            f"Cannot {action} a product with status {product.status}",
            code="INVALID_STATUS_TRANSITION",
        )

    previous = product.status
    product.status = transition.target
    if action == "approve":
        product.approved_by = principal.user_id
        product.approved_at = _utc_now()
    db.commit()
    db.refresh(product)

    record_audit_event(
        db,
        event_type="product",
        event_name="PRODUCT_STATUS_CHANGED",
        user_id=principal.user_id,
        resource_type="product",
        resource_id=product.id,
        metadata={"action": action, "from": previous, "to": product.status},
        client=client,
    )
    return product
