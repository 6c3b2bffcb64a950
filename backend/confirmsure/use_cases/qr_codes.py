"""QR code generation and rendering use-cases."""
from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from ..client_info import NO_CLIENT, ClientInfo
from ..config import settings
from ..domain_errors import NotFoundError, ValidationError
from ..models import Product
from ..permissions import PRODUCTS_CREATE, PRODUCTS_READ
from ..schemas import QrGenerateRequest
from ..security import Principal, ensure_authorized, require_permission
from ..services.audit import record_audit_event
from ..services.qr_identity import (
    RenderedQr,
    generate_batch,
    is_valid_format,
    render_printable_qr,
    render_qr_png,
)


def generate_qr_codes_use_case(
    *,
    db: Session,
    principal: Principal,
    request: QrGenerateRequest,
    client: ClientInfo = NO_CLIENT,
) -> dict[str, Any]:
    """Draw unused identifiers and render them; nothing is reserved until a product uses one."""
    require_permission(principal, PRODUCTS_CREATE)
    count = request.count if request.type == "batch" else 1
    if count > settings.QR_SYNC_BATCH_MAX:
        raise ValidationError(
            f"Batch size cannot exceed {settings.QR_SYNC_BATCH_MAX}",
            errors=[{"field": "count", "message": f"must be at most {settings.QR_SYNC_BATCH_MAX}"}],
        )

    codes = generate_batch(db, count, ceiling=settings.QR_SYNC_BATCH_MAX)
    if request.type == "printable":
        rendered = [render_printable_qr(code) for code in codes]
    else:
        rendered = [render_qr_png(code, width=request.width) for code in codes]

    record_audit_event(
        db,
        event_type="product",
        event_name="QR_CODE_GENERATED",
        user_id=principal.user_id,
        resource_type="qr_code",
        resource_id=codes[0] if count == 1 else f"batch_{count}",
        metadata={"type": request.type, "count": count, "qr_codes": codes},
        client=client,
    )
    return {"type": request.type, "count": count, "items": [item.as_dict() for item in rendered]}


def render_product_qr_use_case(
    *,
    db: Session,
    principal: Principal,
    qr_code: str,
    printable: bool = False,
    width: int | None = None,
) -> RenderedQr:
    require_permission(principal, PRODUCTS_READ)
    if not is_valid_format(qr_code):
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
    product = db.query(Product).filter(Product.qr_code == qr_code).first()
    if product is None:
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
    ensure_authorized(principal, PRODUCTS_READ, product.factory_id)
    if printable:
        return render_printable_qr(product.qr_code)
    return render_qr_png(product.qr_code, width=width)
