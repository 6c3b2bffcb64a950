"""Public product verification by QR code."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..client_info import NO_CLIENT, ClientInfo
from ..domain_errors import NotFoundError
from ..models import AuthenticationMarker, Factory, Product, QrScan
from ..services.qr_identity import is_valid_format

logger = logging.getLogger(__name__)


def _record_scan(db: Session, product: Product, *, authentic: bool, client: ClientInfo, referrer: str | None) -> None:
    try:
        db.add(
            QrScan(
                product_id=product.id,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                referrer=referrer[:512] if referrer else None,
                scan_result="success" if authentic else "unpublished",
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record QR scan for product %s", product.id)


def verify_product_use_case(
    *,
    db: Session,
    qr_code: str,
    client: ClientInfo = NO_CLIENT,
    referrer: str | None = None,
) -> dict[str, Any]:
    """Resolve a scanned code; malformed and unknown codes are both plain 404s."""
    if not is_valid_format(qr_code):
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
    product = db.query(Product).filter(Product.qr_code == qr_code).first()
    if product is None:
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")

    factory = db.query(Factory).filter(Factory.id == product.factory_id).first()
    markers = (
        db.query(AuthenticationMarker)
        .filter(AuthenticationMarker.product_id == product.id)
        .order_by(AuthenticationMarker.created_at.asc())
        .all()
    )
    authentic = product.status == "published"
    payload = {
        "qr_code": product.qr_code,
        "is_authentic": authentic,
        "status": product.status,
        "product": product,
        "factory": factory,
        "markers": markers,
    }
    _record_scan(db, product, authentic=authentic, client=client, referrer=referrer)
    return payload
