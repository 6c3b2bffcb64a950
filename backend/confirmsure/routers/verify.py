"""Public verification endpoint; no authentication."""
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from ..client_info import ClientInfo, get_client_info
from ..database import get_db
from ..schemas import VerificationResponse
from ..use_cases.verification import verify_product_use_case

router = APIRouter(tags=["verification"])


@router.get("/product/{qr_code}", response_model=VerificationResponse)
def verify_product(
    qr_code: str,
    referer: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    return verify_product_use_case(db=db, qr_code=qr_code, client=client, referrer=referer)
