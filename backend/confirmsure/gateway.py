"""Request gateway: rate limiting, route classification and role checks.

Runs before any router. Route handlers still enforce their own permission and
tenant checks; the gateway only rejects requests that can never succeed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence
from urllib.parse import quote

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .client_info import get_client_ip
from .domain_errors import RateLimited
from .permissions import (
    ANALYTICS_READ,
    PRODUCTS_READ,
    ROLE_VALUES,
    USERS_READ,
    Role,
    role_has_permission,
    validate_permission_references,
)
from .problem_details import build_problem_details_response
from .security import Principal
from .services.rate_limit import RateLimitDecision, SlidingWindowLimiter

logger = logging.getLogger(__name__)

SIGN_IN_PAGE = "/auth/signin"
UNAUTHORIZED_PAGE = "/auth/unauthorized"

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "; ".join(
        [
            "default-src 'self'",
            "img-src 'self' data: https:",
            "style-src 'self' 'unsafe-inline'",
            "frame-ancestors 'none'",
        ]
    ),
}


@dataclass(frozen=True)
class RouteRule:
    pattern: str
    kind: str  # "api" or "page"
    roles: frozenset[str]
    permission: str | None = None

    def matches(self, path: str) -> bool:
        return path == self.pattern or path.startswith(self.pattern + "/")


_ALL_ROLES = frozenset(ROLE_VALUES)

ROUTE_RULES: tuple[RouteRule, ...] = (
    RouteRule("/api/admin", "api", frozenset({Role.ADMIN.value}), USERS_READ),
    RouteRule("/api/factory", "api", _ALL_ROLES, PRODUCTS_READ),
    RouteRule("/api/analytics", "api", _ALL_ROLES, ANALYTICS_READ),
    RouteRule("/admin", "page", frozenset({Role.ADMIN.value})),
    RouteRule("/factory", "page", _ALL_ROLES),
)


def validate_route_table(rules: Iterable[RouteRule] = ROUTE_RULES) -> None:
    """Refuse to start when a rule names a role or permission that does not exist."""
    rules = tuple(rules)
    validate_permission_references(
        permissions=[rule.permission for rule in rules if rule.permission],
        roles=[role for rule in rules for role in rule.roles],
        source="route table",
    )
    for rule in rules:
        if rule.kind not in ("api", "page"):
            raise RuntimeError(f"Invalid route table: unknown kind {rule.kind!r} for {rule.pattern}")


def classify(path: str, rules: Sequence[RouteRule] = ROUTE_RULES) -> RouteRule | None:
    for rule in rules:
        if rule.matches(path):
            return rule
    return None


def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


class GatewayMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        *,
        limiter: SlidingWindowLimiter,
        resolver: Callable[[Request], Principal | None],
        rules: Sequence[RouteRule] = ROUTE_RULES,
    ) -> None:
        super().__init__(app)
        validate_route_table(rules)
        self.limiter = limiter
        self.resolver = resolver
        self.rules = tuple(rules)

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path

        decision = await run_in_threadpool(self.limiter.check, get_client_ip(request), path)
        if decision is not None and not decision.allowed:
            logger.info("Rate limit exceeded for %s on %s", get_client_ip(request), path)
            response = build_problem_details_response(RateLimited(retry_after=decision.retry_after))
            return self._finalize(response, decision)

        rule = classify(path, self.rules)
        if rule is not None and request.method != "OPTIONS":
            rejection = await self._check_access(request, rule, path)
            if rejection is not None:
                return self._finalize(rejection, decision)

        response = await call_next(request)
        return self._finalize(response, decision)

    async def _check_access(self, request: Request, rule: RouteRule, path: str) -> Response | None:
        principal = await run_in_threadpool(self.resolver, request)
        if principal is None or not principal.is_active:
            if rule.kind == "page":
                return RedirectResponse(f"{SIGN_IN_PAGE}?redirectTo={quote(path)}", status_code=307)
            return _error(401, "Authentication required")

        allowed = principal.role in rule.roles and (
            rule.permission is None or role_has_permission(principal.role, rule.permission)
        )
        if not allowed:
            if rule.kind == "page":
                return RedirectResponse(UNAUTHORIZED_PAGE, status_code=307)
            return _error(403, "Insufficient permissions")

        request.state.principal = principal
        return None

    @staticmethod
    def _finalize(response: Response, decision: RateLimitDecision | None) -> Response:
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if decision is not None:
            for name, value in decision.headers().items():
                response.headers[name] = value
        return response
