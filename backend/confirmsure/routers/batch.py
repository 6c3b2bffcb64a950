"""Batch operation endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_current_principal
from ..celery_app import enqueue_batch_operation
from ..client_info import ClientInfo, get_client_info
from ..database import get_db
from ..schemas import (
    BatchOperationCreate,
    BatchOperationDetail,
    BatchOperationListResponse,
    BatchOperationResponse,
)
from ..security import Principal
from ..use_cases.batch_operations import (
    create_batch_operation_use_case,
    get_batch_operation_use_case,
    list_batch_operations_use_case,
)

router = APIRouter(prefix="/factory/batch", tags=["batch"])


@router.post("", response_model=BatchOperationResponse, status_code=202)
def create_batch_operation(
    data: BatchOperationCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Admit a batch if every row is valid, then hand it to the worker."""
    return create_batch_operation_use_case(
        db=db,
        principal=principal,
        data=data,
        client=client,
        enqueue=enqueue_batch_operation,
    )


@router.get("", response_model=BatchOperationListResponse)
def list_batch_operations(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return list_batch_operations_use_case(db=db, principal=principal, limit=limit, offset=offset)


@router.get("/{operation_id}", response_model=BatchOperationDetail)
def get_batch_operation(
    operation_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    operation = get_batch_operation_use_case(db=db, principal=principal, operation_id=operation_id)
    detail = BatchOperationDetail.model_validate(operation)
    detail.items = sorted(detail.items, key=lambda item: item.row_number)
    return detail
