"""Best-effort audit trail writes."""
from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..client_info import NO_CLIENT, ClientInfo
from ..models import AuditLog

logger = logging.getLogger(__name__)


def record_audit_event(
    db: Session,
    *,
    event_type: str,
    event_name: str,
    user_id: UUID | None = None,
    resource_type: str | None = None,
    resource_id: Any = None,
    metadata: dict[str, Any] | None = None,
    client: ClientInfo = NO_CLIENT,
) -> bool:
    """Append an audit entry in its own commit.

    Failures are rolled back and logged, never raised: the primary operation
    has already committed by the time this runs.
    """
    try:
        db.add(
            AuditLog(
                event_type=event_type,
                event_name=event_name,
                user_id=user_id,
                resource_type=resource_type,
                resource_id=str(resource_id) if resource_id is not None else None,
                meta_data=metadata or {},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
        )
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to write audit event %s", event_name)
        return False
