"""Sign-in and sign-out use-cases."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from ..auth import create_access_token, verify_password
from ..client_info import NO_CLIENT, ClientInfo
from ..config import settings
from ..domain_errors import AuthenticationError, AuthorizationError
from ..models import UserProfile
from ..security import Principal
from ..services.audit import record_audit_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignInResult:
    access_token: str
    expires_in: int
    user: UserProfile


def _audit_auth(db: Session, event_name: str, *, user_id=None, metadata=None, client: ClientInfo = NO_CLIENT) -> None:
    record_audit_event(
        db,
        event_type="auth",
        event_name=event_name,
        user_id=user_id,
        resource_type="user" if user_id else None,
        resource_id=user_id,
        metadata=metadata,
        client=client,
    )


def sign_in_use_case(
    *,
    db: Session,
    email: str,
    password: str,
    expected_role: str | None = None,
    client: ClientInfo = NO_CLIENT,
) -> SignInResult:
    normalized = email.strip().lower()
    user = db.query(UserProfile).filter(UserProfile.email == normalized).first()
    if user is None or not verify_password(password, user.password_hash):
        _audit_auth(
            db,
            "SIGN_IN_FAILED",
            user_id=user.id if user else None,
            metadata={"email": normalized},
            client=client,
        )
        raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")

    if expected_role and user.role != expected_role:
        _audit_auth(
            db,
            "ROLE_MISMATCH",
            user_id=user.id,
            metadata={"email": normalized, "expected": expected_role, "actual": user.role},
            client=client,
        )
        raise AuthorizationError("Access denied for this role", code="ROLE_MISMATCH")

    if not user.is_active:
        _audit_auth(db, "INACTIVE_USER_ATTEMPT", user_id=user.id, metadata={"email": normalized}, client=client)
        raise AuthenticationError("Account is deactivated", code="ACCOUNT_INACTIVE")

    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)

    expires_in = int(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES) * 60
    token = create_access_token({"sub": str(user.id), "role": user.role})
    _audit_auth(
        db,
        "SIGN_IN_SUCCESS",
        user_id=user.id,
        metadata={"email": normalized, "role": user.role},
        client=client,
    )
    logger.info("User %s signed in", user.id)
    return SignInResult(access_token=token, expires_in=expires_in, user=user)


def sign_out_use_case(*, db: Session, principal: Principal, client: ClientInfo = NO_CLIENT) -> None:
    _audit_auth(db, "SIGN_OUT_SUCCESS", user_id=principal.user_id, client=client)
