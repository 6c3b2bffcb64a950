"""Product endpoints."""
from datetime import date
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from ..auth import get_current_principal
from ..client_info import ClientInfo, get_client_info
from ..database import get_db
from ..domain_errors import ValidationError, field_errors
from ..schemas import (
    MarkerCreate,
    MarkerResponse,
    ProductCreate,
    ProductFilters,
    ProductListResponse,
    ProductResponse,
    ProductStatus,
    ProductUpdate,
)
from ..security import Principal
from ..use_cases.markers import create_marker_use_case, list_markers_use_case
from ..use_cases.products import (
    create_product_use_case,
    get_product_use_case,
    list_products_use_case,
    transition_product_status_use_case,
    update_product_use_case,
)

router = APIRouter(prefix="/products", tags=["products"])

StatusAction = Literal["submit", "approve", "reject", "publish", "archive"]


def _filters(
    query: Optional[str] = Query(default=None, max_length=100),
    factory_id: Optional[UUID] = None,
    status: Optional[ProductStatus] = None,
    product_type: Optional[str] = Query(default=None, max_length=100),
    batch_id: Optional[str] = Query(default=None, max_length=50),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> ProductFilters:
    try:
        return ProductFilters(
            query=query,
            factory_id=factory_id,
            status=status,
            product_type=product_type,
            batch_id=batch_id,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        )
    except SchemaValidationError as exc:
        errors = field_errors(exc.errors())
        raise ValidationError(errors[0]["message"], errors=errors)


@router.post("", response_model=ProductResponse, status_code=201)
def create_product(
    data: ProductCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    return create_product_use_case(db=db, principal=principal, data=data, client=client)


@router.get("", response_model=ProductListResponse)
def list_products(
    filters: ProductFilters = Depends(_filters),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Newest first; non-admins only ever see their own factory."""
    return list_products_use_case(db=db, principal=principal, filters=filters)


@router.get("/{product_id}", response_model=ProductResponse)
def get_product(
    product_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return get_product_use_case(db=db, principal=principal, product_id=product_id)


@router.patch("/{product_id}", response_model=ProductResponse)
def update_product(
    product_id: UUID,
    data: ProductUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    return update_product_use_case(db=db, principal=principal, product_id=product_id, data=data, client=client)


@router.get("/{product_id}/markers", response_model=list[MarkerResponse])
def list_markers(
    product_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return list_markers_use_case(db=db, principal=principal, product_id=product_id)


@router.post("/{product_id}/markers", response_model=MarkerResponse, status_code=201)
def create_marker(
    product_id: UUID,
    data: MarkerCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    return create_marker_use_case(db=db, principal=principal, product_id=product_id, data=data, client=client)


# Registered last so "/{product_id}/markers" is matched first.
@router.post("/{product_id}/{action}", response_model=ProductResponse)
def change_product_status(
    product_id: UUID,
    action: StatusAction,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    return transition_product_status_use_case(
        db=db,
        principal=principal,
        product_id=product_id,
        action=action,
        client=client,
    )
