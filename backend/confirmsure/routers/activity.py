"""Admin activity feed."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..permissions import USERS_READ
from ..schemas import ActivityListResponse, ActivityTimeframe
from ..security import Principal
from ..use_cases.activity import DEFAULT_TIMEFRAME, list_activity_use_case

router = APIRouter(prefix="/admin", tags=["activity"])


@router.get("/activity", response_model=ActivityListResponse)
def list_activity(
    timeframe: ActivityTimeframe = DEFAULT_TIMEFRAME,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(PermissionChecker(USERS_READ)),
    db: Session = Depends(get_db),
):
    return list_activity_use_case(db=db, principal=principal, timeframe=timeframe, limit=limit, offset=offset)
