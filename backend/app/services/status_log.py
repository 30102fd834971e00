"""Append-only audit trail of approval status changes."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.constants import ApprovalStatus
from app.core.logging import get_logger
from app.models.project import StatusChangeEvent

logger = get_logger(__name__)


def _value(status: ApprovalStatus | str) -> str:
    return status.value if isinstance(status, ApprovalStatus) else str(status)


def append_event(
    db: Session,
    *,
    project_id: str,
    segment_id: str,
    field: str,
    from_status: ApprovalStatus | str,
    to_status: ApprovalStatus | str,
    reason: Optional[str] = None,
) -> StatusChangeEvent:
    event = StatusChangeEvent(
        project_id=project_id,
        segment_id=segment_id,
        field=field,
        from_status=_value(from_status),
        to_status=_value(to_status),
        reason=reason,
    )
    db.add(event)
    db.flush()
    logger.info(
        "status_changed",
        project_id=project_id,
        segment_id=segment_id,
        field=field,
        from_status=event.from_status,
        to_status=event.to_status,
        reason=reason,
    )
    return event


def list_events(
    db: Session,
    project_id: str,
    *,
    segment_id: Optional[str] = None,
    field: Optional[str] = None,
    after_id: int = 0,
) -> list[StatusChangeEvent]:
    stmt = select(StatusChangeEvent).where(
        StatusChangeEvent.project_id == project_id,
        StatusChangeEvent.id > after_id,
    )
    if segment_id:
        stmt = stmt.where(StatusChangeEvent.segment_id == segment_id)
    if field:
        stmt = stmt.where(StatusChangeEvent.field == field)
    # Ids are the stream cursor, so they also define the order.
    stmt = stmt.order_by(StatusChangeEvent.id.asc())
    return list(db.scalars(stmt))
