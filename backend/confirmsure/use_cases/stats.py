"""Factory statistics."""
from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..domain_errors import NotFoundError
from ..models import PRODUCT_STATUSES, Factory, Product, QrScan
from ..permissions import ANALYTICS_READ
from ..security import Principal, ensure_authorized, require_permission

SERIES_DAYS = 30


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value)).date()


def factory_stats_use_case(
    *,
    db: Session,
    principal: Principal,
    factory_id: UUID | None = None,
    now: Callable[[], datetime] = _utc_now,
) -> dict[str, Any]:
    """Product counters and a daily creation series for one factory.

    Admins may target any factory or, without ``factory_id``, the whole
    platform. Everyone else always gets their own factory.
    """
    require_permission(principal, ANALYTICS_READ)
    if principal.is_admin:
        target = factory_id
        if target is not None and db.query(Factory.id).filter(Factory.id == target).first() is None:
            raise NotFoundError("Factory not found", code="FACTORY_NOT_FOUND")
    else:
        target = principal.factory_id
    ensure_authorized(principal, ANALYTICS_READ, target)

    def products():
        query = db.query(Product)
        if target is not None:
            query = query.filter(Product.factory_id == target)
        return query

    today = datetime.combine(now().date(), time.min, tzinfo=timezone.utc)
    week_ago = today - timedelta(days=7)
    month_ago = today - timedelta(days=SERIES_DAYS)

    status_query = db.query(Product.status, func.count(Product.id))
    if target is not None:
        status_query = status_query.filter(Product.factory_id == target)
    breakdown = {status: 0 for status in PRODUCT_STATUSES}
    for status, count in status_query.group_by(Product.status).all():
        breakdown[status] = int(count)

    scans = db.query(func.count(QrScan.id)).join(Product, QrScan.product_id == Product.id)
    if target is not None:
        scans = scans.filter(Product.factory_id == target)

    series: "OrderedDict[date, dict[str, int]]" = OrderedDict()
    for offset in range(SERIES_DAYS, -1, -1):
        series[(today - timedelta(days=offset)).date()] = {"total": 0, "published": 0}
    recent = (
        products()
        .with_entities(Product.created_at, Product.status)
        .filter(Product.created_at >= month_ago)
        .all()
    )
    for created_at, status in recent:
        bucket = series.get(_as_date(created_at))
        if bucket is None:
            continue
        bucket["total"] += 1
        if status == "published":
            bucket["published"] += 1

    return {
        "factory_id": target,
        "total_products": sum(breakdown.values()),
        "published_products": breakdown["published"],
        "created_today": products().filter(Product.created_at >= today).count(),
        "created_last_7_days": products().filter(Product.created_at >= week_ago).count(),
        "created_last_30_days": products().filter(Product.created_at >= month_ago).count(),
        "total_scans": int(scans.scalar() or 0),
        "status_breakdown": breakdown,
        "daily_series": [{"day": day, **counts} for day, counts in series.items()],
    }
