"""QR code endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ..auth import get_current_principal
from ..client_info import ClientInfo, get_client_info
from ..database import get_db
from ..schemas import QrGenerateRequest, QrGenerateResponse
from ..security import Principal
from ..use_cases.qr_codes import generate_qr_codes_use_case, render_product_qr_use_case

router = APIRouter(prefix="/qr", tags=["qr"])


@router.post("/generate", response_model=QrGenerateResponse)
def generate_qr_codes(
    data: QrGenerateRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Draw fresh identifiers and return them as PNG data URLs."""
    return generate_qr_codes_use_case(db=db, principal=principal, request=data, client=client)


@router.get("/{qr_code}.png")
def product_qr_image(
    qr_code: str,
    printable: bool = False,
    width: Optional[int] = Query(default=None, ge=64, le=2048),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    rendered = render_product_qr_use_case(
        db=db,
        principal=principal,
        qr_code=qr_code,
        printable=printable,
        width=width,
    )
    disposition = "attachment" if printable else "inline"
    return Response(
        content=rendered.png,
        media_type="image/png",
        headers={"Content-Disposition": f'{disposition}; filename="{rendered.qr_code}.png"'},
    )
