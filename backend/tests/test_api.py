from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from conftest import make_user
from confirmsure import auth as auth_module
from confirmsure.auth import create_access_token, hash_password
from confirmsure.database import get_db
from confirmsure.main import app
from confirmsure.routers import batch as batch_router
from confirmsure.services.qr_identity import is_valid_format
from confirmsure.services.rate_limit import InMemoryWindowStore

PASSWORD = "Corr3ct-Horse!"


@pytest.fixture
def client(db, monkeypatch) -> Iterator[TestClient]:
    TestingSession = sessionmaker(bind=db.get_bind(), autocommit=False, autoflush=False)

    def _get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    monkeypatch.setattr(auth_module, "SessionLocal", TestingSession)
    monkeypatch.setattr(app.state.rate_limiter, "store", InMemoryWindowStore())
    try:
        yield TestClient(app, follow_redirects=False)
    finally:
        app.dependency_overrides.clear()


def _auth(principal) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(principal.user_id)})}"}


def test_sign_in_sets_cookie_and_me_lists_permissions(client, db, factory_one) -> None:
    make_user(db, "manager@example.com", "factory_manager", factory_one, password_hash=hash_password(PASSWORD))

    response = client.post("/api/auth/signin", json={"email": "manager@example.com", "password": PASSWORD})

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    assert "access_token=" in response.headers["set-cookie"]
    assert "httponly" in response.headers["set-cookie"].lower()
    token = response.json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["role"] == "factory_manager"
    assert "analytics:read" in me.json()["permissions"]
    assert "factories:create" not in me.json()["permissions"]


def test_bad_credentials_are_problem_details(client) -> None:
    response = client.post("/api/auth/signin", json={"email": "ghost@example.com", "password": "nope"})

    assert response.status_code == 401
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["code"] == "INVALID_CREDENTIALS"


def test_sign_in_is_rate_limited_per_client(client) -> None:
    statuses = [
        client.post("/api/auth/signin", json={"email": "ghost@example.com", "password": "nope"}).status_code
        for _ in range(6)
    ]

    assert statuses == [401, 401, 401, 401, 401, 429]


def test_product_create_and_tenant_isolation(client, operator_one, operator_two) -> None:
    created = client.post(
        "/api/products",
        json={"product_name": "Widget", "product_type": "Electronics", "metadata": {"sku": "W-1"}},
        headers=_auth(operator_one),
    )

    assert created.status_code == 201
    body = created.json()
    assert is_valid_format(body["qr_code"])
    assert body["status"] == "draft"
    assert body["metadata"] == {"sku": "W-1"}
    assert created.headers["X-RateLimit-Limit"] == "100"

    listed = client.get("/api/products", headers=_auth(operator_one)).json()
    assert listed["total"] == 1

    foreign = client.get(f"/api/products/{body['id']}", headers=_auth(operator_two))
    assert foreign.status_code == 404
    assert foreign.json()["code"] == "PRODUCT_NOT_FOUND"
    assert client.get("/api/products", headers=_auth(operator_two)).json()["total"] == 0


def test_product_endpoints_require_a_session(client) -> None:
    response = client.get("/api/products")

    assert response.status_code == 401
    assert response.json()["code"] == "AUTHENTICATION_REQUIRED"


def test_invalid_product_payload_is_400(client, operator_one) -> None:
    response = client.post(
        "/api/products",
        json={"product_name": "W", "product_type": "Electronics"},
        headers=_auth(operator_one),
    )

    assert response.status_code == 400
    assert response.json()["details"]["errors"][0]["field"] == "product_name"


def test_invalid_list_filters_are_400(client, operator_one) -> None:
    response = client.get(
        "/api/products",
        params={"date_from": "2026-02-01", "date_to": "2026-01-01"},
        headers=_auth(operator_one),
    )

    assert response.status_code == 400


def test_status_action_route_and_markers(client, operator_one) -> None:
    product = client.post(
        "/api/products",
        json={"product_name": "Widget", "product_type": "Electronics"},
        headers=_auth(operator_one),
    ).json()

    marker = client.post(
        f"/api/products/{product['id']}/markers",
        json={"type": "uv_mark", "position": "Behind the label"},
        headers=_auth(operator_one),
    )
    submitted = client.post(f"/api/products/{product['id']}/submit", headers=_auth(operator_one))

    assert marker.status_code == 201
    assert submitted.status_code == 200
    assert submitted.json()["status"] == "pending"
    assert client.post(f"/api/products/{product['id']}/explode", headers=_auth(operator_one)).status_code == 400


def test_admin_area_is_gated_by_role(client, admin, manager_one) -> None:
    denied = client.get("/api/admin/users", headers=_auth(manager_one))
    anonymous = client.get("/api/admin/users")
    allowed = client.get("/api/admin/users", headers=_auth(admin))

    assert denied.status_code == 403
    assert denied.json() == {"error": "Insufficient permissions"}
    assert anonymous.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json()["total"] == 2


def test_public_verification(client, operator_one) -> None:
    product = client.post(
        "/api/products",
        json={"product_name": "Widget", "product_type": "Electronics"},
        headers=_auth(operator_one),
    ).json()

    response = client.get(f"/product/{product['qr_code']}", headers={"Referer": "https://example.com/"})
    missing = client.get("/product/CS-12")

    assert response.status_code == 200
    assert response.json()["is_authentic"] is False
    assert response.json()["factory"]["name"] == "Factory One"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert missing.status_code == 404


def test_qr_generation_endpoint(client, operator_one) -> None:
    batch = client.post("/api/qr/generate", json={"type": "batch", "count": 3}, headers=_auth(operator_one))
    too_many = client.post("/api/qr/generate", json={"type": "batch", "count": 101}, headers=_auth(operator_one))

    assert batch.status_code == 200
    items = batch.json()["items"]
    assert len({item["qr_code"] for item in items}) == 3
    assert all(item["data_url"].startswith("data:image/png;base64,") for item in items)
    assert batch.headers["X-RateLimit-Limit"] == "50"
    assert too_many.status_code == 400


def test_product_qr_image(client, operator_one, operator_two) -> None:
    product = client.post(
        "/api/products",
        json={"product_name": "Widget", "product_type": "Electronics"},
        headers=_auth(operator_one),
    ).json()

    image = client.get(f"/api/qr/{product['qr_code']}.png", headers=_auth(operator_one))
    foreign = client.get(f"/api/qr/{product['qr_code']}.png", headers=_auth(operator_two))

    assert image.status_code == 200
    assert image.headers["content-type"] == "image/png"
    assert image.content.startswith(b"\x89PNG")
    assert foreign.status_code == 404


def test_batch_upload_is_admitted_and_enqueued(client, operator_one, monkeypatch) -> None:
    enqueued = []
    monkeypatch.setattr(batch_router, "enqueue_batch_operation", enqueued.append)

    accepted = client.post(
        "/api/factory/batch",
        json={
            "operation_type": "create_products",
            "items": [{"product_name": "Widget", "product_type": "Electronics"}],
        },
        headers=_auth(operator_one),
    )
    rejected = client.post(
        "/api/factory/batch",
        json={"operation_type": "create_products", "items": [{"product_name": "Widget"}]},
        headers=_auth(operator_one),
    )

    assert accepted.status_code == 202
    assert accepted.json()["status"] == "pending"
    assert len(enqueued) == 1
    assert rejected.status_code == 400
    assert rejected.json()["details"]["errors"][0]["row"] == 2

    detail = client.get(f"/api/factory/batch/{accepted.json()['id']}", headers=_auth(operator_one))
    assert [item["row_number"] for item in detail.json()["items"]] == [2]


def test_factory_stats_endpoint(client, manager_one, operator_one) -> None:
    assert client.get("/api/factory/stats", headers=_auth(manager_one)).status_code == 200
    # Operators pass the gateway but lack analytics:read.
    assert client.get("/api/factory/stats", headers=_auth(operator_one)).status_code == 403


def test_factories_listing(client, admin, manager_one, factory_one, factory_two) -> None:
    assert client.get("/api/factories", headers=_auth(admin)).json()["total"] == 2
    assert client.get("/api/factories", headers=_auth(manager_one)).json()["total"] == 1


def test_null_for_required_fields_is_400(client, admin, operator_one, factory_one) -> None:
    product = client.post(
        "/api/products",
        json={"product_name": "Widget", "product_type": "Electronics"},
        headers=_auth(operator_one),
    ).json()

    product_patch = client.patch(
        f"/api/products/{product['id']}", json={"product_name": None}, headers=_auth(operator_one)
    )
    factory_patch = client.patch(f"/api/factories/{factory_one.id}", json={"name": None}, headers=_auth(admin))

    assert product_patch.status_code == 400
    assert product_patch.json()["details"]["errors"][0]["field"] == "product_name"
    assert factory_patch.status_code == 400
    assert factory_patch.json()["code"] == "VALIDATION_FAILED"
    assert client.get(f"/api/products/{product['id']}", headers=_auth(operator_one)).json()["product_name"] == "Widget"


def test_admin_activity_feed(client, admin, manager_one, operator_one) -> None:
    client.post(
        "/api/products",
        json={"product_name": "Widget", "product_type": "Electronics"},
        headers=_auth(operator_one),
    )

    feed = client.get("/api/admin/activity", params={"timeframe": "1h"}, headers=_auth(admin))

    assert feed.status_code == 200
    assert [item["event_name"] for item in feed.json()["items"]] == ["PRODUCT_CREATED"]
    assert feed.json()["items"][0]["user"]["email"] == "operator1@example.com"
    assert client.get("/api/admin/activity", headers=_auth(manager_one)).status_code == 403
    bad = client.get("/api/admin/activity", params={"timeframe": "90d"}, headers=_auth(admin))
    assert bad.status_code == 400


def test_analytics_overview_is_gated(client, admin, manager_one, operator_one) -> None:
    assert client.get("/api/analytics/overview", headers=_auth(admin)).json()["factory_id"] is None
    assert client.get("/api/analytics/overview", headers=_auth(manager_one)).status_code == 200
    assert client.get("/api/analytics/overview", headers=_auth(operator_one)).status_code == 403
