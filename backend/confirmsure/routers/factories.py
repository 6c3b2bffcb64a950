"""Factory endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_current_principal
from ..client_info import ClientInfo, get_client_info
from ..database import get_db
from ..schemas import FactoryCreate, FactoryListResponse, FactoryResponse, FactoryUpdate
from ..security import Principal
from ..use_cases.factories import (
    create_factory_use_case,
    get_factory_use_case,
    list_factories_use_case,
    update_factory_use_case,
)

router = APIRouter(prefix="/factories", tags=["factories"])


@router.post("", response_model=FactoryResponse, status_code=201)
def create_factory(
    data: FactoryCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Register a factory (admin only)."""
    return create_factory_use_case(db=db, principal=principal, data=data, client=client)


@router.get("", response_model=FactoryListResponse)
def list_factories(
    include_inactive: bool = False,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return list_factories_use_case(
        db=db,
        principal=principal,
        include_inactive=include_inactive,
        limit=limit,
        offset=offset,
    )


@router.get("/{factory_id}", response_model=FactoryResponse)
def get_factory(
    factory_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return get_factory_use_case(db=db, principal=principal, factory_id=factory_id)


@router.patch("/{factory_id}", response_model=FactoryResponse)
def update_factory(
    factory_id: UUID,
    data: FactoryUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    return update_factory_use_case(db=db, principal=principal, factory_id=factory_id, data=data, client=client)
