from __future__ import annotations

import copy

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from schedule_editor.errors import AuthorizationError, NotFoundError, ValidationError
from schedule_editor.models import RejectedChange, utcnow
from schedule_editor.pending import claim_pending, get_pending


def normalize_reason(reason: str | None) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("Rejection reason is required")
    return cleaned


def reject_pending(db: Session, change_id: int, rejecting_user_id: int, reason: str | None) -> RejectedChange:
    """Move a pending change into the rejection log.

    The reason is checked before anything is read or written. The new record
    and the pending row's deletion share the caller's transaction.
    """
    cleaned = normalize_reason(reason)
    change = get_pending(db, change_id)
    record = RejectedChange(
        week_id=change.week_id,
        change_type=change.change_type,
        change_data=copy.deepcopy(change.change_data),
        user_id=change.user_id,
        submitted_at=change.created_at,
        rejected_by=rejecting_user_id,
        rejected_at=utcnow(),
        rejection_reason=cleaned,
        is_read=False,
    )
    if not claim_pending(db, change_id):
        raise NotFoundError(f"Pending change {change_id} not found")
    db.add(record)
    db.flush()
    logger.info("Pending change rejected", change_id=change_id, rejected_id=record.id, rejected_by=rejecting_user_id)
    return record


def list_rejected_for_user(db: Session, user_id: int) -> tuple[list[RejectedChange], int]:
    items = list(
        db.scalars(
            select(RejectedChange)
            .where(RejectedChange.user_id == user_id)
            .order_by(RejectedChange.rejected_at.desc(), RejectedChange.id.desc())
        ).all()
    )
    unread = db.scalar(
        select(func.count(RejectedChange.id)).where(RejectedChange.user_id == user_id, RejectedChange.is_read.is_(False))
    ) or 0
    return items, int(unread)


def mark_read(db: Session, rejected_id: int, acting_user_id: int) -> RejectedChange:
    record = db.get(RejectedChange, rejected_id)
    if record is None:
        raise NotFoundError(f"Rejected change {rejected_id} not found")
    if record.user_id != acting_user_id:
        raise AuthorizationError("Access denied")
    record.is_read = True
    db.flush()
    return record


def mark_all_read(db: Session, user_id: int) -> int:
    result = db.execute(
        update(RejectedChange)
        .where(RejectedChange.user_id == user_id, RejectedChange.is_read.is_(False))
        .values(is_read=True)
    )
    db.flush()
    return int(result.rowcount or 0)
