"""QR identity generation, parsing and rendering.

Identifiers look like ``CS-123456``. Uniqueness is checked against every
product ever created (archived ones included) and enforced at insert time by
the ``uq_products_qr_code`` constraint; the pre-check only saves round trips.
"""
from __future__ import annotations

import base64
import io
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Callable, TypeVar
from urllib.parse import urlparse

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import IdentityExhaustion, ValidationError
from ..models import Product

logger = logging.getLogger(__name__)

T = TypeVar("T")

QR_PREFIX = "CS-"
QR_CODE_PATTERN = re.compile(r"CS-[0-9]{6}")
_MIN_NUMBER = 100000
_MAX_NUMBER = 999999

DEFAULT_BORDER = 2
PRINTABLE_WIDTH = 512
PRINTABLE_BORDER = 4


class CandidateTaken(Exception):
    """The claim lost a race for a candidate that passed the pre-check."""

    def __init__(self, candidate: str) -> None:
        super().__init__(f"QR code {candidate} already taken")
        self.candidate = candidate


def draw_candidate() -> str:
    """Draw a uniformly distributed identifier in CS-100000..CS-999999."""
    number = _MIN_NUMBER + secrets.randbelow(_MAX_NUMBER - _MIN_NUMBER + 1)
    return f"{QR_PREFIX}{number}"


def generate_unique(
    draw: Callable[[], str],
    exists: Callable[[str], bool],
    claim: Callable[[str], T] | None = None,
    *,
    max_attempts: int | None = None,
) -> str | T:
    """Draw candidates until one is free, or raise IdentityExhaustion.

    With ``claim`` the free candidate is also persisted; a ``CandidateTaken``
    from the claim counts as a used attempt. Returns the claim result, or the
    candidate itself when no claim is given.
    """
    limit = max_attempts if max_attempts is not None else settings.QR_MAX_ATTEMPTS
    for attempt in range(1, limit + 1):
        candidate = draw()
        if exists(candidate):
            continue
        if claim is None:
            return candidate
        try:
            return claim(candidate)
        except CandidateTaken:
            logger.info("QR code %s claimed concurrently (attempt %s/%s)", candidate, attempt, limit)
            continue
    logger.error("QR identity space exhausted after %s attempts", limit)
    raise IdentityExhaustion(limit)


def qr_code_exists(db: Session, code: str) -> bool:
    return db.query(Product.id).filter(Product.qr_code == code).first() is not None


def generate_qr_identity(db: Session, *, draw: Callable[[], str] = draw_candidate) -> str:
    """Return an identifier unused at the time of the check (not reserved)."""
    return generate_unique(draw, lambda code: qr_code_exists(db, code))


def generate_batch(
    db: Session,
    count: int,
    *,
    ceiling: int | None = None,
    draw: Callable[[], str] = draw_candidate,
) -> list[str]:
    limit = ceiling if ceiling is not None else settings.QR_BATCH_MAX
    if count < 1 or count > limit:
        raise ValidationError(
            f"Batch size must be between 1 and {limit}",
            errors=[{"field": "count", "message": f"must be between 1 and {limit}"}],
        )
    codes: list[str] = []
    seen: set[str] = set()
    for _ in range(count):
        # Codes in the same batch are not in the table yet.
        code = generate_unique(draw, lambda c: c in seen or qr_code_exists(db, c))
        seen.add(code)
        codes.append(code)
    return codes


def is_valid_format(code: str | None) -> bool:
    return bool(code) and QR_CODE_PATTERN.fullmatch(code) is not None


def verification_url(code: str) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/product/{code}"


def extract_from_url(url: str | None) -> str | None:
    """Return the code from a ``.../product/<code>`` verification URL."""
    if not url:
        return None
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    parts = path.split("/")
    if len(parts) >= 3 and parts[1] == "product" and is_valid_format(parts[2]):
        return parts[2]
    return None


@dataclass(frozen=True)
class RenderedQr:
    qr_code: str
    verification_url: str
    png: bytes
    size: int

    @property
    def data_url(self) -> str:
        return "data:image/png;base64," + base64.b64encode(self.png).decode("ascii")

    def as_dict(self) -> dict:
        return {
            "qr_code": self.qr_code,
            "verification_url": self.verification_url,
            "data_url": self.data_url,
            "format": "png",
            "size": self.size,
        }


def render_qr_png(code: str, *, width: int | None = None, border: int = DEFAULT_BORDER) -> RenderedQr:
    """Render the verification URL for ``code`` as a PNG close to ``width`` pixels."""
    url = verification_url(code)
    target = width or settings.QR_DEFAULT_WIDTH
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=1, border=border)
    qr.add_data(url)
    qr.make(fit=True)
    qr.box_size = max(1, target // (qr.modules_count + 2 * border))

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return RenderedQr(qr_code=code, verification_url=url, png=buffer.getvalue(), size=img.pixel_size)


def render_printable_qr(code: str) -> RenderedQr:
    return render_qr_png(code, width=PRINTABLE_WIDTH, border=PRINTABLE_BORDER)
