from __future__ import annotations

from typing import Any

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from schedule_editor.errors import AuthorizationError, NotFoundError, ValidationError
from schedule_editor.models import CHANGE_TYPES, PendingChange, User, Week


def get_pending(db: Session, change_id: int) -> PendingChange:
    change = db.get(PendingChange, change_id)
    if change is None:
        raise NotFoundError(f"Pending change {change_id} not found")
    return change


def submit_pending(db: Session, week_id: int, change_type: str, payload: dict[str, Any], user: User) -> PendingChange:
    """Record a contributor's proposal. Admins edit directly and may not queue changes."""
    if user.is_admin:
        raise AuthorizationError("Admins should make changes directly, not submit for approval")
    if change_type not in CHANGE_TYPES:
        raise ValidationError(f"Invalid changeType: {change_type!r}")
    if db.get(Week, week_id) is None:
        raise NotFoundError(f"Week {week_id} not found")
    change = PendingChange(week_id=week_id, change_type=change_type, change_data=payload, user_id=user.id)
    db.add(change)
    db.flush()
    logger.info("Pending change submitted", change_id=change.id, week_id=week_id, change_type=change_type, user_id=user.id)
    return change


def list_pending_for_week(db: Session, week_id: int) -> list[PendingChange]:
    return list(
        db.scalars(
            select(PendingChange)
            .where(PendingChange.week_id == week_id)
            .order_by(PendingChange.created_at.desc(), PendingChange.id.desc())
        ).all()
    )


def claim_pending(db: Session, change_id: int) -> bool:
    """Delete the pending row and report whether this session removed it.

    A decision claims its change before touching the schedule; a concurrent
    decision that already deleted the row leaves nothing to claim. Rolling back
    the caller's transaction restores the row.
    """
    result = db.execute(delete(PendingChange).where(PendingChange.id == change_id))
    return result.rowcount == 1


def cancel_pending(db: Session, change_id: int, acting_user_id: int) -> PendingChange:
    change = get_pending(db, change_id)
    if change.user_id != acting_user_id:
        raise AuthorizationError("Only the submitter can cancel a pending change")
    if not claim_pending(db, change_id):
        raise NotFoundError(f"Pending change {change_id} not found")
    db.flush()
    logger.info("Pending change cancelled", change_id=change_id, user_id=acting_user_id)
    return change
