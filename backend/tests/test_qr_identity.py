from __future__ import annotations

import base64
import itertools

import pytest

from conftest import make_factory, make_user
from confirmsure.config import settings
from confirmsure.domain_errors import IdentityExhaustion, ValidationError
from confirmsure.models import Product
from confirmsure.services.qr_identity import (
    CandidateTaken,
    draw_candidate,
    extract_from_url,
    generate_batch,
    generate_qr_identity,
    generate_unique,
    is_valid_format,
    render_printable_qr,
    render_qr_png,
    verification_url,
)


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("CS-123456", True),
        ("CS-100000", True),
        ("CS-12345", False),
        ("cs-123456", False),
        ("CS-1234567", False),
        ("CS-12a456", False),
        ("CS-123456\n", False),
        ("CS-١٢٣٤٥٦", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_format(code, expected) -> None:
    assert is_valid_format(code) is expected


def test_draw_candidate_stays_in_range() -> None:
    for _ in range(200):
        code = draw_candidate()
        assert is_valid_format(code)
        assert 100000 <= int(code[3:]) <= 999999


def test_generate_unique_skips_taken_codes() -> None:
    draws = iter(["CS-111111", "CS-222222", "CS-333333"])
    taken = {"CS-111111", "CS-222222"}

    assert generate_unique(lambda: next(draws), taken.__contains__) == "CS-333333"


def test_generate_unique_raises_after_exactly_max_attempts() -> None:
    calls = itertools.count(1)

    def draw() -> str:
        next(calls)
        return "CS-555555"

    with pytest.raises(IdentityExhaustion) as exc:
        generate_unique(draw, lambda _code: True)

    assert next(calls) == settings.QR_MAX_ATTEMPTS + 1
    assert exc.value.http_status == 503
    assert exc.value.code == "QR_IDENTITY_EXHAUSTED"
    assert exc.value.details == {"attempts": settings.QR_MAX_ATTEMPTS}


def test_claim_conflict_is_retried_within_budget() -> None:
    draws = iter(["CS-111111", "CS-222222"])
    claimed = []

    def claim(code: str) -> str:
        if code == "CS-111111":
            raise CandidateTaken(code)
        claimed.append(code)
        return f"product:{code}"

    result = generate_unique(lambda: next(draws), lambda _code: False, claim, max_attempts=2)

    assert result == "product:CS-222222"
    assert claimed == ["CS-222222"]


def test_claim_conflicts_count_towards_exhaustion() -> None:
    def claim(code: str):
        raise CandidateTaken(code)

    with pytest.raises(IdentityExhaustion):
        generate_unique(lambda: "CS-111111", lambda _code: False, claim, max_attempts=3)


def test_generate_qr_identity_avoids_archived_products(db, sequential_codes) -> None:
    factory = make_factory(db, "Archive Works")
    user = make_user(db, "maker@example.com", "factory_operator", factory)
    db.add(
        Product(
            qr_code="CS-100001",
            product_name="Old Widget",
            product_type="Electronics",
            status="archived",
            factory_id=factory.id,
            created_by=user.id,
        )
    )
    db.commit()

    assert generate_qr_identity(db, draw=sequential_codes()) == "CS-100002"


def test_generate_batch_returns_distinct_codes(db) -> None:
    draws = iter(["CS-100001", "CS-100001", "CS-100002", "CS-100003"])

    codes = generate_batch(db, 3, draw=lambda: next(draws))

    assert codes == ["CS-100001", "CS-100002", "CS-100003"]


@pytest.mark.parametrize("count", [0, 1001])
def test_generate_batch_rejects_out_of_range_counts(db, count) -> None:
    with pytest.raises(ValidationError):
        generate_batch(db, count)


def test_generate_batch_honours_caller_ceiling(db) -> None:
    with pytest.raises(ValidationError, match="between 1 and 100"):
        generate_batch(db, 101, ceiling=100)


def test_verification_url_and_extraction(monkeypatch) -> None:
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "https://verify.example.com/")

    url = verification_url("CS-123456")

    assert url == "https://verify.example.com/product/CS-123456"
    assert extract_from_url(url) == "CS-123456"


@pytest.mark.parametrize(
    "url",
    [
        None,
        "",
        "https://confirmsure.com/products/CS-123456",
        "https://confirmsure.com/product/CS-12345",
        "https://confirmsure.com/",
    ],
)
def test_extract_from_url_rejects_other_urls(url) -> None:
    assert extract_from_url(url) is None


def test_render_qr_png_produces_png_data_url() -> None:
    rendered = render_qr_png("CS-123456", width=256)

    assert rendered.png.startswith(b"\x89PNG")
    assert rendered.verification_url.endswith("/product/CS-123456")
    assert 0 < rendered.size <= 256
    prefix = "data:image/png;base64,"
    assert rendered.data_url.startswith(prefix)
    assert base64.b64decode(rendered.data_url[len(prefix):]) == rendered.png


def test_printable_qr_is_larger_than_default() -> None:
    assert render_printable_qr("CS-123456").size > render_qr_png("CS-123456").size
