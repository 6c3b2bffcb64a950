"""User management endpoints (admin area)."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_current_principal
from ..client_info import ClientInfo, get_client_info
from ..database import get_db
from ..schemas import RoleName, UserCreate, UserListResponse, UserResponse, UserRoleUpdate
from ..security import Principal
from ..use_cases.users import (
    create_user_use_case,
    deactivate_user_use_case,
    list_users_use_case,
    update_user_role_use_case,
)

router = APIRouter(prefix="/admin/users", tags=["users"])


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    data: UserCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    return create_user_use_case(db=db, principal=principal, data=data, client=client)


@router.get("", response_model=UserListResponse)
def list_users(
    role: Optional[RoleName] = None,
    factory_id: Optional[UUID] = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return list_users_use_case(
        db=db,
        principal=principal,
        role=role,
        factory_id=factory_id,
        limit=limit,
        offset=offset,
    )


@router.patch("/{user_id}/role", response_model=UserResponse)
def update_user_role(
    user_id: UUID,
    data: UserRoleUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Change a user's role; moving to a factory role needs a factory."""
    return update_user_role_use_case(db=db, principal=principal, user_id=user_id, data=data, client=client)


@router.post("/{user_id}/deactivate", response_model=UserResponse)
def deactivate_user(
    user_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    return deactivate_user_use_case(db=db, principal=principal, user_id=user_id, client=client)
