"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None
    headers: dict[str, str] | None = None

    def __str__(self) -> str:
        return self.message


class AuthenticationError(DomainError):
    """No valid session, or the session belongs to an inactive principal."""

    def __init__(self, message: str = "Authentication required", *, code: str = "AUTHENTICATION_REQUIRED") -> None:
        super().__init__(code=code, http_status=401, message=message)


class AuthorizationError(DomainError):
    """Permission or tenant mismatch; not recoverable without a role change."""

    def __init__(self, message: str = "Insufficient permissions", *, code: str = "INSUFFICIENT_PERMISSIONS") -> None:
        super().__init__(code=code, http_status=403, message=message)


class NotFoundError(DomainError):
    def __init__(self, message: str = "Not found", *, code: str = "NOT_FOUND") -> None:
        super().__init__(code=code, http_status=404, message=message)


class ConflictError(DomainError):
    def __init__(self, message: str, *, code: str = "CONFLICT") -> None:
        super().__init__(code=code, http_status=409, message=message)


class ValidationError(DomainError):
    """Malformed input; `details` carries field-level errors."""

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        errors: list[dict[str, Any]] | None = None,
        code: str = "VALIDATION_FAILED",
    ) -> None:
        super().__init__(
            code=code,
            http_status=400,
            message=message,
            details={"errors": errors} if errors else None,
        )


class RateLimited(DomainError):
    def __init__(self, *, retry_after: int, headers: dict[str, str] | None = None) -> None:
        super().__init__(
            code="RATE_LIMITED",
            http_status=429,
            message="Too many requests",
            details={"retry_after": retry_after},
            headers=headers,
        )


class IdentityExhaustion(DomainError):
    """No unused identifier found within the attempt ceiling."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            code="QR_IDENTITY_EXHAUSTED",
            http_status=503,
            message=f"Unable to generate unique QR code after {attempts} attempts",
            details={"attempts": attempts},
        )


def field_errors(raw_errors: Iterable[Mapping[str, Any]], *, drop_source: bool = False) -> list[dict[str, Any]]:
    """Flatten pydantic-style errors into ``{"field", "message"}`` entries.

    ``drop_source`` strips the leading "body"/"query"/"path" location FastAPI adds.
    """
    flattened = []
    for err in raw_errors:
        loc = list(err.get("loc", ()))
        if drop_source and loc and loc[0] in ("body", "query", "path", "header", "cookie"):
            loc = loc[1:]
        flattened.append({"field": ".".join(str(part) for part in loc) or None, "message": err.get("msg", "Invalid value")})
    return flattened
