"""Factory statistics endpoint."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_principal
from ..database import get_db
from ..schemas import FactoryStatsResponse
from ..security import Principal
from ..use_cases.stats import factory_stats_use_case

router = APIRouter(prefix="/factory", tags=["stats"])


@router.get("/stats", response_model=FactoryStatsResponse)
def factory_stats(
    factory_id: Optional[UUID] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return factory_stats_use_case(db=db, principal=principal, factory_id=factory_id)


analytics_router = APIRouter(prefix="/analytics", tags=["stats"])


@analytics_router.get("/overview", response_model=FactoryStatsResponse)
def analytics_overview(
    factory_id: Optional[UUID] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Same figures as /factory/stats; platform-wide for admins without a factory."""
    return factory_stats_use_case(db=db, principal=principal, factory_id=factory_id)
