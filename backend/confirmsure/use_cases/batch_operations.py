"""Batch operation use-cases: all-or-nothing admission, per-item processing."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence
from uuid import UUID

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..client_info import NO_CLIENT, ClientInfo
from ..config import settings
from ..domain_errors import ConflictError, DomainError, NotFoundError, ValidationError, field_errors
from ..models import BatchOperation, BatchOperationItem, Product
from ..permissions import PRODUCTS_CREATE, PRODUCTS_READ
from ..schemas import BatchOperationCreate, ProductCreate, ProductUpdate
from ..security import Principal, apply_factory_scope, ensure_authorized, require_permission
from ..services.audit import record_audit_event
from ..services.qr_identity import draw_candidate, render_qr_png
from .products import insert_product_with_unique_qr, resolve_target_factory

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "create_products": ("product_name", "product_type"),
    "update_products": ("id", "product_name"),
    "generate_qr_codes": ("product_id",),
}

# Column limits checked at admission for product creation rows.
_CREATE_LENGTH_LIMITS = {"product_name": 200, "product_type": 100}

# Row 1 of the source file is the header.
FIRST_DATA_ROW = 2

EnqueueHook = Callable[[UUID], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def validate_batch_items(items: Sequence[Mapping[str, Any]], operation_type: str) -> list[dict[str, Any]]:
    """Return every structural problem in ``items``; an empty list means admissible."""
    required = REQUIRED_FIELDS.get(operation_type)
    if required is None:
        return [{"row": None, "field": "operation_type", "message": "Invalid operation type"}]

    errors: list[dict[str, Any]] = []
    for index, item in enumerate(items):
        row = index + FIRST_DATA_ROW
        if not isinstance(item, Mapping):
            errors.append({"row": row, "field": None, "message": f"Row {row} is not an object"})
            continue
        for field in required:
            if _is_blank(item.get(field)):
                errors.append(
                    {"row": row, "field": field, "message": f"Missing required field '{field}' in row {row}"}
                )
        if operation_type == "create_products":
            for field, limit in _CREATE_LENGTH_LIMITS.items():
                value = item.get(field)
                if isinstance(value, str) and len(value) > limit:
                    errors.append(
                        {
                            "row": row,
                            "field": field,
                            "message": f"{field} too long in row {row} (max {limit} characters)",
                        }
                    )
    return errors


def create_batch_operation_use_case(
    *,
    db: Session,
    principal: Principal,
    data: BatchOperationCreate,
    client: ClientInfo = NO_CLIENT,
    enqueue: EnqueueHook | None = None,
) -> BatchOperation:
    require_permission(principal, PRODUCTS_CREATE)
    factory_id = resolve_target_factory(db, principal, data.factory_id)
    ensure_authorized(principal, PRODUCTS_CREATE, factory_id, existing_resource=False)

    items = data.items
    if not items:
        raise ValidationError(
            "At least one item required",
            errors=[{"field": "items", "message": "At least one item required"}],
        )
    if len(items) > settings.BATCH_MAX_ITEMS:
        raise ValidationError(
            f"Too many items. Maximum {settings.BATCH_MAX_ITEMS} items per batch.",
            errors=[{"field": "items", "message": f"must contain at most {settings.BATCH_MAX_ITEMS} items"}],
        )

    errors = validate_batch_items(items, data.operation_type)
    if errors:
        raise ValidationError(errors[0]["message"], errors=errors)

    operation = BatchOperation(
        operation_type=data.operation_type,
        factory_id=factory_id,
        created_by=principal.user_id,
        total_items=len(items),
        status="pending",
        error_details=[],
    )
    db.add(operation)
    db.flush()
    db.add_all(
        BatchOperationItem(
            batch_operation_id=operation.id,
            row_number=index + FIRST_DATA_ROW,
            item_data=dict(item),
            status="pending",
        )
        for index, item in enumerate(items)
    )
    db.commit()
    db.refresh(operation)

    record_audit_event(
        db,
        event_type="product",
        event_name="BATCH_OPERATION_CREATED",
        user_id=principal.user_id,
        resource_type="batch_operation",
        resource_id=operation.id,
        metadata={
            "operation_type": operation.operation_type,
            "total_items": operation.total_items,
            "factory_id": str(factory_id),
        },
        client=client,
    )

    if enqueue is not None:
        enqueue(operation.id)
    return operation


def list_batch_operations_use_case(
    *,
    db: Session,
    principal: Principal,
    limit: int = 20,
    offset: int = 0,
) -> dict[str, Any]:
    require_permission(principal, PRODUCTS_READ)
    query = apply_factory_scope(db.query(BatchOperation), principal, BatchOperation.factory_id)
    total = query.count()
    items = query.order_by(BatchOperation.created_at.desc()).offset(offset).limit(limit).all()
    return {"items": items, "total": total, "limit": limit, "offset": offset}


def get_batch_operation_use_case(*, db: Session, principal: Principal, operation_id: UUID) -> BatchOperation:
    require_permission(principal, PRODUCTS_READ)
    operation = db.query(BatchOperation).filter(BatchOperation.id == operation_id).first()
    if operation is None:
        raise NotFoundError("Batch operation not found", code="BATCH_OPERATION_NOT_FOUND")
    ensure_authorized(principal, PRODUCTS_READ, operation.factory_id)
    return operation


# Per-item processing


def _schema_error(exc: SchemaValidationError) -> ValidationError:
    errors = field_errors(exc.errors())
    first = errors[0] if errors else {"field": None, "message": "Invalid item"}
    prefix = f"{first['field']}: " if first["field"] else ""
    return ValidationError(f"{prefix}{first['message']}", errors=errors)


def _parse_uuid(value: Any, field: str) -> UUID:
    try:
        return value if isinstance(value, UUID) else UUID(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid {field}", errors=[{"field": field, "message": "must be a UUID"}])


def _clean(item: Mapping[str, Any], fields) -> dict[str, Any]:
    """Keep known columns; blank cells mean "not provided"."""
    return {field: item[field] for field in fields if field in item and not _is_blank(item[field])}


def _load_factory_product(db: Session, operation: BatchOperation, raw_id: Any, field: str) -> Product:
    product_id = _parse_uuid(raw_id, field)
    product = (
        db.query(Product)
        .filter(Product.id == product_id, Product.factory_id == operation.factory_id)
        .first()
    )
    if product is None:
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
    return product


def _process_create(db: Session, operation: BatchOperation, item: BatchOperationItem, draw) -> dict[str, Any]:
    try:
        fields = [name for name in ProductCreate.model_fields if name != "factory_id"]
        data = ProductCreate.model_validate(_clean(item.item_data, fields))
    except SchemaValidationError as exc:
        raise _schema_error(exc)

    values = data.model_dump(exclude={"factory_id", "metadata"})
    values.update(
        factory_id=operation.factory_id,
        created_by=operation.created_by,
        status="draft",
        meta_data={**(data.metadata or {}), "batch_operation_id": str(operation.id)},
    )
    product = insert_product_with_unique_qr(db, values=values, draw=draw)
    record_audit_event(
        db,
        event_type="product",
        event_name="PRODUCT_CREATED",
        user_id=operation.created_by,
        resource_type="product",
        resource_id=product.id,
        metadata={"qr_code": product.qr_code, "batch_operation_id": str(operation.id)},
    )
    return {"product_id": str(product.id), "qr_code": product.qr_code}


def _process_update(db: Session, operation: BatchOperation, item: BatchOperationItem, draw) -> dict[str, Any]:
    product = _load_factory_product(db, operation, item.item_data.get("id"), "id")
    if product.status == "archived":
        raise ConflictError("Archived products cannot be modified", code="PRODUCT_ARCHIVED")
    try:
        data = ProductUpdate.model_validate(_clean(item.item_data, ProductUpdate.model_fields))
    except SchemaValidationError as exc:
        raise _schema_error(exc)

    changes = data.model_dump(exclude_unset=True)
    if "metadata" in changes:
        changes["meta_data"] = changes.pop("metadata") or {}
    for field, value in changes.items():
        setattr(product, field, value)
    db.commit()
    return {"product_id": str(product.id), "qr_code": product.qr_code, "fields": sorted(changes)}


def _process_generate_qr(db: Session, operation: BatchOperation, item: BatchOperationItem, draw) -> dict[str, Any]:
    product = _load_factory_product(db, operation, item.item_data.get("product_id"), "product_id")
    rendered = render_qr_png(product.qr_code)
    return {
        "product_id": str(product.id),
        "qr_code": rendered.qr_code,
        "verification_url": rendered.verification_url,
        "size": rendered.size,
    }


ITEM_PROCESSORS = {
    "create_products": _process_create,
    "update_products": _process_update,
    "generate_qr_codes": _process_generate_qr,
}


def _final_status(total: int, failed: int) -> str:
    if total and failed >= total:
        return "failed"
    if failed:
        return "completed_with_errors"
    return "completed"


def process_batch_operation_use_case(
    *,
    db: Session,
    operation_id: UUID,
    draw: Callable[[], str] = draw_candidate,
) -> BatchOperation | None:
    """Process every pending item of an admitted operation.

    Items fail independently: a failing item is recorded with its error and
    the remaining items still run. Returns None for an unknown operation.
    """
    operation = (
        db.query(BatchOperation)
        .filter(BatchOperation.id == operation_id)
        .with_for_update(skip_locked=True)
        .first()
    )
    if operation is None:
        logger.warning("Batch operation %s not found or locked", operation_id)
        return None
    if operation.status != "pending":
        logger.info("Batch operation %s already %s", operation_id, operation.status)
        return operation

    operation.status = "processing"
    operation.started_at = _utc_now()
    db.commit()

    processor = ITEM_PROCESSORS[operation.operation_type]
    item_ids = [
        row[0]
        for row in db.query(BatchOperationItem.id)
        .filter(
            BatchOperationItem.batch_operation_id == operation.id,
            BatchOperationItem.status == "pending",
        )
        .order_by(BatchOperationItem.row_number.asc())
        .all()
    ]

    errors: list[dict[str, Any]] = list(operation.error_details or [])
    processed = operation.processed_items or 0
    failed = operation.failed_items or 0
    for item_id in item_ids:
        item = db.query(BatchOperationItem).filter(BatchOperationItem.id == item_id).one()
        row_number = item.row_number
        error_message = None
        result = None
        try:
            result = processor(db, operation, item, draw)
        except DomainError as exc:
            db.rollback()
            error_message = exc.message
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Batch operation %s failed on row %s", operation_id, row_number)
            error_message = "Database error while processing item"
        except Exception:
            db.rollback()
            logger.exception("Unexpected error in batch operation %s on row %s", operation_id, row_number)
            error_message = "Unexpected error while processing item"

        item = db.query(BatchOperationItem).filter(BatchOperationItem.id == item_id).one()
        item.processed_at = _utc_now()
        processed += 1
        if error_message is None:
            item.status = "completed"
            item.result = result
            product_id = (result or {}).get("product_id")
            item.product_id = UUID(product_id) if product_id else None
        else:
            failed += 1
            item.status = "failed"
            item.error_message = error_message
            errors.append({"row": row_number, "error": error_message})

        operation.processed_items = processed
        operation.failed_items = failed
        operation.error_details = list(errors)
        db.commit()

    operation.status = _final_status(operation.total_items, failed)
    operation.completed_at = _utc_now()
    db.commit()
    db.refresh(operation)

    record_audit_event(
        db,
        event_type="product",
        event_name="BATCH_OPERATION_COMPLETED",
        user_id=operation.created_by,
        resource_type="batch_operation",
        resource_id=operation.id,
        metadata={
            "status": operation.status,
            "processed_items": operation.processed_items,
            "failed_items": operation.failed_items,
        },
    )
    logger.info(
        "Batch operation %s finished: %s (%s processed, %s failed)",
        operation.id,
        operation.status,
        operation.processed_items,
        operation.failed_items,
    )
    return operation


def requeue_stalled_operations(*, db: Session, started_before: datetime, limit: int = 20) -> list[UUID]:
    """Put operations stuck in ``processing`` back to ``pending``.

    Only items still pending are processed again; completed and failed items
    and their counters are kept.
    """
    operations = (
        db.query(BatchOperation)
        .filter(BatchOperation.status == "processing", BatchOperation.started_at <= started_before)
        .order_by(BatchOperation.started_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for operation in operations:
        logger.warning("Batch operation %s stalled in processing since %s", operation.id, operation.started_at)
        operation.status = "pending"
    db.commit()
    return [operation.id for operation in operations]
