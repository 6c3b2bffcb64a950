from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from confirmsure.gateway import (
    SECURITY_HEADERS,
    GatewayMiddleware,
    RouteRule,
    classify,
    validate_route_table,
)
from confirmsure.security import Principal
from confirmsure.services.rate_limit import InMemoryWindowStore, RateLimitRule, SlidingWindowLimiter

PRINCIPALS = {
    "admin": Principal(user_id=uuid4(), role="admin", factory_id=None),
    "manager": Principal(user_id=uuid4(), role="factory_manager", factory_id=uuid4()),
    "operator": Principal(user_id=uuid4(), role="factory_operator", factory_id=uuid4()),
    "inactive": Principal(user_id=uuid4(), role="admin", factory_id=None, is_active=False),
}


def _resolver(request: Request):
    return PRINCIPALS.get(request.headers.get("x-test-user", ""))


def _client(rules=None) -> TestClient:
    app = FastAPI()
    limiter = SlidingWindowLimiter(
        InMemoryWindowStore(),
        rules or [RateLimitRule("/api/auth/signin", window_ms=60_000, max_requests=2)],
    )
    app.add_middleware(GatewayMiddleware, limiter=limiter, resolver=_resolver)

    @app.get("/api/admin/users")
    def admin_users(request: Request):
        return {"role": request.state.principal.role}

    @app.get("/api/analytics/summary")
    def analytics():
        return {"ok": True}

    @app.get("/api/factory/stats")
    def factory_stats():
        return {"ok": True}

    @app.get("/admin")
    def admin_page():
        return {"page": "admin"}

    @app.get("/factory/products")
    def factory_page():
        return {"page": "factory"}

    @app.post("/api/auth/signin")
    def sign_in():
        return {"ok": True}

    @app.get("/product/{code}")
    def verify(code: str):
        return {"code": code}

    return TestClient(app, follow_redirects=False)


def test_public_route_needs_no_session() -> None:
    response = _client().get("/product/CS-123456")

    assert response.status_code == 200
    for name, value in SECURITY_HEADERS.items():
        assert response.headers[name] == value


def test_api_route_without_session_is_401_json() -> None:
    response = _client().get("/api/admin/users")

    assert response.status_code == 401
    assert response.json() == {"error": "Authentication required"}


def test_inactive_principal_is_treated_as_anonymous() -> None:
    response = _client().get("/api/admin/users", headers={"x-test-user": "inactive"})

    assert response.status_code == 401


def test_page_route_without_session_redirects_to_sign_in() -> None:
    response = _client().get("/factory/products")

    assert response.status_code == 307
    assert response.headers["location"] == "/auth/signin?redirectTo=/factory/products"


def test_admin_api_rejects_manager_with_403() -> None:
    response = _client().get("/api/admin/users", headers={"x-test-user": "manager"})

    assert response.status_code == 403
    assert response.json() == {"error": "Insufficient permissions"}


def test_admin_page_redirects_manager_to_unauthorized() -> None:
    response = _client().get("/admin", headers={"x-test-user": "manager"})

    assert response.status_code == 307
    assert response.headers["location"] == "/auth/unauthorized"


def test_admin_passes_and_principal_is_attached() -> None:
    response = _client().get("/api/admin/users", headers={"x-test-user": "admin"})

    assert response.status_code == 200
    assert response.json() == {"role": "admin"}


def test_analytics_needs_analytics_permission() -> None:
    client = _client()

    assert client.get("/api/analytics/summary", headers={"x-test-user": "operator"}).status_code == 403
    assert client.get("/api/analytics/summary", headers={"x-test-user": "manager"}).status_code == 200


def test_factory_api_open_to_every_role() -> None:
    client = _client()

    for user in ("admin", "manager", "operator"):
        assert client.get("/api/factory/stats", headers={"x-test-user": user}).status_code == 200


def test_rate_limited_request_gets_429_with_headers() -> None:
    client = _client()
    first = client.post("/api/auth/signin")
    client.post("/api/auth/signin")
    third = client.post("/api/auth/signin")

    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert "Retry-After" not in first.headers

    assert third.status_code == 429
    body = third.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["error"] == "Too many requests"
    assert body["details"]["retry_after"] >= 1
    assert third.headers["content-type"] == "application/problem+json"
    assert third.headers["Retry-After"] == str(body["details"]["retry_after"])
    assert third.headers["X-RateLimit-Remaining"] == "0"
    assert third.headers["X-Frame-Options"] == "DENY"


def test_classify_matches_segment_boundaries() -> None:
    assert classify("/api/admin").pattern == "/api/admin"
    assert classify("/api/admin/users").pattern == "/api/admin"
    assert classify("/api/administrator") is None
    assert classify("/factory").kind == "page"
    assert classify("/api/factories") is None


def test_route_table_with_unknown_permission_fails_closed() -> None:
    rules = [RouteRule("/api/reports", "api", frozenset({"admin"}), "reports:read")]

    with pytest.raises(RuntimeError, match="unknown permissions"):
        validate_route_table(rules)


def test_route_table_with_unknown_role_fails_at_startup() -> None:
    rules = [RouteRule("/api/reports", "api", frozenset({"auditor"}))]

    with pytest.raises(RuntimeError, match="unknown roles"):
        validate_route_table(rules)
