"""RFC 7807 Problem Details helpers."""
from __future__ import annotations

from http import HTTPStatus

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .domain_errors import DomainError, ValidationError, field_errors


def build_problem_details_response(exc: DomainError) -> JSONResponse:
    """Render DomainError as RFC 7807 payload with stable domain code."""
    try:
        title = HTTPStatus(exc.http_status).phrase
    except ValueError:
        title = "Domain Error"

    payload: dict[str, object] = {
        "type": f"https://api.confirmsure.com/problems/{exc.code.lower().replace('_', '-')}",
        "title": title,
        "status": exc.http_status,
        "detail": exc.message,
        "code": exc.code,
        # Clients read the human-readable message from `error`.
        "error": exc.message,
    }
    if exc.details is not None:
        payload["details"] = exc.details

    return JSONResponse(
        status_code=exc.http_status,
        content=payload,
        media_type="application/problem+json",
        headers=exc.headers,
    )


async def domain_error_handler(_: Request, exc: DomainError) -> JSONResponse:
    return build_problem_details_response(exc)


async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed requests are 400 with field-level details, like every other validation failure."""
    errors = field_errors(exc.errors(), drop_source=True)
    message = errors[0]["message"] if errors else "Validation failed"
    if errors and errors[0]["field"]:
        message = f"{errors[0]['field']}: {message}"
    return build_problem_details_response(ValidationError(message, errors=errors))
