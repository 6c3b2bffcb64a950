"""Authentication marker use-cases; tenancy follows the owning product."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from ..client_info import NO_CLIENT, ClientInfo
from ..domain_errors import ConflictError
from ..models import AuthenticationMarker
from ..permissions import PRODUCTS_READ, PRODUCTS_UPDATE
from ..schemas import MarkerCreate
from ..security import Principal
from ..services.audit import record_audit_event
from .products import load_product_for


def create_marker_use_case(
    *,
    db: Session,
    principal: Principal,
    product_id: UUID,
    data: MarkerCreate,
    client: ClientInfo = NO_CLIENT,
) -> AuthenticationMarker:
    product = load_product_for(db, principal, product_id, PRODUCTS_UPDATE)
    if product.status == "archived":
        raise ConflictError("Archived products cannot be modified", code="PRODUCT_ARCHIVED")

    values = data.model_dump(exclude={"coordinates"})
    marker = AuthenticationMarker(
        product_id=product.id,
        coordinates=data.coordinates.model_dump(exclude_none=True) if data.coordinates else None,
        **values,
    )
    db.add(marker)
    db.commit()
    db.refresh(marker)

    record_audit_event(
        db,
        event_type="product",
        event_name="MARKER_CREATED",
        user_id=principal.user_id,
        resource_type="authentication_marker",
        resource_id=marker.id,
        metadata={"product_id": str(product.id), "type": marker.type},
        client=client,
    )
    return marker


def list_markers_use_case(*, db: Session, principal: Principal, product_id: UUID) -> list[AuthenticationMarker]:
    product = load_product_for(db, principal, product_id, PRODUCTS_READ)
    return (
        db.query(AuthenticationMarker)
        .filter(AuthenticationMarker.product_id == product.id)
        .order_by(AuthenticationMarker.created_at.asc())
        .all()
    )
