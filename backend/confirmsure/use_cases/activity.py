"""Platform activity feed built from the audit trail (admin only)."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..domain_errors import AuthorizationError, ValidationError
from ..models import AuditLog, UserProfile
from ..permissions import USERS_READ
from ..security import Principal, require_permission

TIMEFRAMES: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_TIMEFRAME = "24h"

_HIGH_PRIORITY_MARKERS = ("FAILED", "ERROR", "DELETED", "DEACTIVATED", "MISMATCH")
_MEDIUM_PRIORITY_MARKERS = ("CREATED", "UPDATED")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def mask_ip(address: str | None) -> str | None:
    if not address:
        return None
    parts = address.split(".")
    if len(parts) == 4:
        return ".".join(parts[:3] + ["xxx"])
    return "masked"


def activity_priority(event_type: str, event_name: str) -> str:
    if any(marker in event_name for marker in _HIGH_PRIORITY_MARKERS):
        return "high"
    if event_type == "auth" or any(marker in event_name for marker in _MEDIUM_PRIORITY_MARKERS):
        return "medium"
    return "low"


def list_activity_use_case(
    *,
    db: Session,
    principal: Principal,
    timeframe: str = DEFAULT_TIMEFRAME,
    limit: int = 50,
    offset: int = 0,
    now: Callable[[], datetime] = _utc_now,
) -> dict[str, Any]:
    """Newest-first audit entries inside ``timeframe`` with a per-type summary."""
    require_permission(principal, USERS_READ)
    if not principal.is_admin:
        raise AuthorizationError()
    window = TIMEFRAMES.get(timeframe)
    if window is None:
        raise ValidationError(
            f"Unknown timeframe: {timeframe}",
            errors=[{"field": "timeframe", "message": f"must be one of {', '.join(TIMEFRAMES)}"}],
        )

    since = now() - window
    query = db.query(AuditLog).filter(AuditLog.created_at >= since)
    total = query.count()
    rows = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    actor_ids = {row.user_id for row in rows if row.user_id is not None}
    actors = {}
    if actor_ids:
        actors = {user.id: user for user in db.query(UserProfile).filter(UserProfile.id.in_(actor_ids))}

    items = []
    for row in rows:
        actor = actors.get(row.user_id)
        items.append(
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_name": row.event_name,
                "resource_type": row.resource_type,
                "resource_id": row.resource_id,
                "metadata": row.meta_data or {},
                "ip_address": mask_ip(row.ip_address),
                "priority": activity_priority(row.event_type, row.event_name),
                "user": (
                    {"id": actor.id, "full_name": actor.full_name, "email": actor.email, "role": actor.role}
                    if actor is not None
                    else None
                ),
                "created_at": row.created_at,
            }
        )

    summary = {
        event_type: {"count": int(count), "latest": latest}
        for event_type, count, latest in (
            db.query(AuditLog.event_type, func.count(AuditLog.id), func.max(AuditLog.created_at))
            .filter(AuditLog.created_at >= since)
            .group_by(AuditLog.event_type)
            .all()
        )
    }

    return {
        "items": items,
        "summary": summary,
        "timeframe": timeframe,
        "total": total,
        "limit": limit,
        "offset": offset,
    }
