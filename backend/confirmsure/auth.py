"""Authentication primitives: password hashing, JWT sessions and principal resolution."""
from datetime import timedelta
from typing import Optional
import logging
import re
import time
from uuid import UUID
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, Request
from sqlalchemy.orm import Session
from .config import settings
from .database import SessionLocal, get_db
from .domain_errors import AuthenticationError, ValidationError
from .models import UserProfile
from .security import Principal, require_permission

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
logger = logging.getLogger(__name__)

_SPECIAL_CHARACTERS = re.compile(r"[^A-Za-z0-9]")


def validate_password_policy(password: str | None, *, email: str | None = None) -> None:
    """Server-side password policy validation."""
    if not password:
        raise ValidationError(
            "Password is required",
            errors=[{"field": "password", "message": "Password is required"}],
        )

    problems = []
    if len(password) < settings.PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters")
    if len(password) > settings.PASSWORD_MAX_LENGTH:
        problems.append(f"Password must be at most {settings.PASSWORD_MAX_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        problems.append("Password must contain at least one number")
    if not _SPECIAL_CHARACTERS.search(password):
        problems.append("Password must contain at least one special character")
    if email and password.lower() == email.lower():
        problems.append("Password must not match email")

    if problems:
        raise ValidationError(
            problems[0],
            errors=[{"field": "password", "message": message} for message in problems],
        )


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # Invalid/corrupted hash should not crash login flow.
        logger.exception("Password verification failed due to invalid hash format")
        return False


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    now = int(time.time())
    if expires_delta:
        exp = now + int(expires_delta.total_seconds())
    else:
        exp = now + int(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES) * 60
    to_encode.update({"exp": exp, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT access token; raises AuthenticationError."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise AuthenticationError("Could not validate credentials", code="INVALID_TOKEN")

    now = int(time.time())
    try:
        exp = int(payload["exp"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("Could not validate credentials", code="INVALID_TOKEN")
    if now > exp + int(settings.JWT_LEEWAY_SECONDS):
        raise AuthenticationError("Token expired", code="TOKEN_EXPIRED")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise AuthenticationError("Could not validate credentials", code="INVALID_TOKEN")
        # Reject tokens issued far in the future (clock skew / malicious tokens).
        if iat_int > now + int(settings.JWT_LEEWAY_SECONDS):
            raise AuthenticationError("Could not validate credentials", code="INVALID_TOKEN")

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type", code="INVALID_TOKEN")
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise AuthenticationError("Could not validate credentials", code="INVALID_TOKEN")
    try:
        return UUID(str(sub))
    except ValueError:
        raise AuthenticationError("Could not validate credentials", code="INVALID_TOKEN")


def extract_token(request: Request) -> str | None:
    """Bearer token from the Authorization header, else the session cookie."""
    header = request.headers.get("authorization")
    if header:
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return request.cookies.get(settings.AUTH_ACCESS_COOKIE_NAME) or None


def load_principal(db: Session, token: str) -> Principal:
    """Resolve a token to a principal. Inactive users come back with is_active False."""
    payload = decode_token(token)
    user_id = _parse_token_subject(payload)
    user = db.query(UserProfile).filter(UserProfile.id == user_id).first()
    if user is None:
        raise AuthenticationError("User not found or inactive")
    return Principal.from_user(user)


def resolve_principal_from_request(request: Request) -> Principal | None:
    """Default session resolver for the gateway; None when there is no valid session."""
    token = extract_token(request)
    if not token:
        return None
    db = SessionLocal()
    try:
        return load_principal(db, token)
    except AuthenticationError:
        return None
    finally:
        db.close()


def get_current_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    """Authenticated, active principal for the request."""
    token = extract_token(request)
    if not token:
        raise AuthenticationError()
    principal = load_principal(db, token)
    if not principal.is_active:
        # Inactive accounts are treated exactly like missing sessions.
        raise AuthenticationError()
    return principal


class PermissionChecker:
    """Dependency enforcing a role permission (no tenant dimension)."""

    def __init__(self, required_permission: str):
        self.required_permission = required_permission

    def __call__(self, principal: Principal = Depends(get_current_principal)) -> Principal:
        require_permission(principal, self.required_permission)
        return principal
