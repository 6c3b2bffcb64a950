"""Auth endpoints."""
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..auth import get_current_principal
from ..client_info import ClientInfo, get_client_info
from ..config import settings
from ..database import get_db
from ..domain_errors import NotFoundError
from ..models import UserProfile
from ..permissions import permissions_for
from ..schemas import MeResponse, SignInRequest, TokenResponse, UserResponse
from ..security import Principal
from ..use_cases.sessions import sign_in_use_case, sign_out_use_case

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_no_store(response: Response) -> None:
    # Reduce the chance of caching tokens.
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"


@router.post("/signin", response_model=TokenResponse)
def sign_in(
    data: SignInRequest,
    response: Response,
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    """Exchange email and password for an access token (also set as an HttpOnly cookie)."""
    result = sign_in_use_case(
        db=db,
        email=data.email,
        password=data.password,
        expected_role=data.expected_role,
        client=client,
    )
    _set_no_store(response)
    response.set_cookie(
        settings.AUTH_ACCESS_COOKIE_NAME,
        result.access_token,
        max_age=result.expires_in,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return TokenResponse(
        access_token=result.access_token,
        expires_in=result.expires_in,
        user=UserResponse.model_validate(result.user),
    )


@router.post("/signout", status_code=204)
def sign_out(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    sign_out_use_case(db=db, principal=principal, client=client)
    response = Response(status_code=204)
    response.delete_cookie(settings.AUTH_ACCESS_COOKIE_NAME)
    return response


@router.get("/me", response_model=MeResponse)
def me(principal: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    """Current profile and the permissions its role grants."""
    user = db.query(UserProfile).filter(UserProfile.id == principal.user_id).first()
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    base = UserResponse.model_validate(user)
    return MeResponse(**base.model_dump(), permissions=sorted(permissions_for(user.role)))
