"""Approval workflow for schedule changes.

Every mutation from either role enters here. Admins apply changes directly;
support users always go through the pending ledger, whatever the payload
says. A proposal leaves SUBMITTED exactly once, as APPROVED, REJECTED or
CANCELLED, and each transition returns a result object describing what
happened instead of leaving callers to re-query the ledger.

Functions in this module own the transaction: they commit once the business
mutation is complete and only then hand events to the dispatcher.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Union

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from schedule_editor.applier import (
    ActivitySnapshot,
    AppliedChange,
    FanOutResult,
    SkippedTarget,
    apply_across_weeks,
    apply_add,
    apply_delete,
    apply_edit,
    complete_payload,
    set_order_index,
)
from schedule_editor.errors import AuthorizationError, NotFoundError, ScheduleError, ZeroEffectError
from schedule_editor.models import Activity, PendingChange, RejectedChange, User, Week, utcnow
from schedule_editor.notifications import NotificationDispatcher, NotificationEvent, notify_best_effort, summarize
from schedule_editor.payloads import AddPayload, ChangePayload, DeletePayload, EditPayload, parse_change_payload
from schedule_editor.pending import cancel_pending, claim_pending, list_pending_for_week, submit_pending
from schedule_editor.rejections import normalize_reason, reject_pending


@dataclass
class Applied:
    """An admin change written straight to the schedule."""

    change_type: str
    results: list[AppliedChange]
    skipped: list[SkippedTarget] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.skipped)


@dataclass
class Submitted:
    pending: PendingChange


@dataclass
class Approved:
    change_id: int
    change_type: str
    results: list[AppliedChange]
    skipped: list[SkippedTarget] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.skipped)


@dataclass
class Rejected:
    change_id: int
    record: RejectedChange


@dataclass
class Cancelled:
    change_id: int


@dataclass
class AlreadyProcessed:
    """The pending change no longer exists; another decision got there first."""

    change_id: int


SubmitOutcome = Union[Applied, Submitted]
ApproveOutcome = Union[Approved, AlreadyProcessed]
RejectOutcome = Union[Rejected, AlreadyProcessed]
CancelOutcome = Union[Cancelled, AlreadyProcessed]


@dataclass
class BulkItemOutcome:
    change_id: int
    outcome: Approved | Rejected | AlreadyProcessed | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, (Approved, Rejected))


def _require_admin(actor: User, action: str) -> None:
    if not actor.is_admin:
        raise AuthorizationError(f"Admin access required to {action}")


def _week_number(db: Session, week_id: int) -> int:
    week = db.get(Week, week_id)
    if week is None:
        raise NotFoundError(f"Week {week_id} not found")
    return week.week_number


def _apply(db: Session, change_type: str, payload: ChangePayload, origin_week_number: int) -> tuple[list[AppliedChange], list[SkippedTarget]]:
    """Run one change through the applier, fan-out when weeks are selected."""
    if payload.is_multi_week:
        fan_out: FanOutResult = apply_across_weeks(db, change_type, payload, origin_week_number, payload.apply_to_weeks)
        return fan_out.successes, fan_out.skipped

    if isinstance(payload, AddPayload):
        activity = apply_add(db, payload.day_id, payload.time, payload.description, payload.period, payload.label_ids)
        return [AppliedChange("created", activity.day.week.week_number, ActivitySnapshot.of(activity))], []
    if isinstance(payload, EditPayload):
        activity = apply_edit(db, payload.activity_id, payload.time, payload.description, payload.label_ids)
        return [AppliedChange("updated", activity.day.week.week_number, ActivitySnapshot.of(activity))], []
    if isinstance(payload, DeletePayload):
        snapshot = apply_delete(db, payload.activity_id)
        return [AppliedChange("deleted", snapshot.week_number, snapshot)], []
    raise ScheduleError(f"Unsupported payload for {change_type}")


def _event(
    name: str,
    change_type: str,
    actor: User,
    request_id: int,
    change_data: dict,
    week_number: int | None,
    target_weeks: Iterable[int] = (),
    reason: str | None = None,
    submitter_id: int | None = None,
) -> NotificationEvent:
    day_name = change_data.get("dayName")
    return NotificationEvent(
        event=name,
        change_type=change_type,
        actor_name=actor.display_name,
        actor_role=actor.role,
        request_id=request_id,
        week_number=week_number,
        target_weeks=sorted(set(target_weeks)),
        day_name=day_name if isinstance(day_name, str) else None,
        summary=summarize(change_data),
        reason=reason,
        submitter_id=submitter_id,
        timestamp=utcnow(),
    )


def submit_change(
    db: Session,
    actor: User,
    week_id: int,
    change_type: str,
    change_data: dict,
    dispatcher: NotificationDispatcher | None = None,
) -> SubmitOutcome:
    payload = parse_change_payload(change_type, change_data)
    origin_week_number = _week_number(db, week_id)

    if actor.is_admin:
        try:
            results, skipped = _apply(db, change_type, payload, origin_week_number)
        except ScheduleError:
            db.rollback()
            raise
        db.commit()
        logger.info(
            "Change applied directly",
            change_type=change_type,
            actor_id=actor.id,
            week_number=origin_week_number,
            results=len(results),
        )
        return Applied(change_type=change_type, results=results, skipped=skipped)

    complete_payload(db, payload)
    pending = submit_pending(db, week_id, change_type, payload.to_json(), actor)
    db.commit()
    notify_best_effort(
        dispatcher,
        _event(
            "REQUEST_CREATED",
            change_type,
            actor,
            pending.id,
            pending.change_data,
            origin_week_number,
            target_weeks=[origin_week_number, *payload.apply_to_weeks],
            submitter_id=actor.id,
        ),
    )
    return Submitted(pending=pending)


def approve_change(
    db: Session,
    change_id: int,
    approver: User,
    dispatcher: NotificationDispatcher | None = None,
) -> ApproveOutcome:
    _require_admin(approver, "approve changes")
    pending = db.get(PendingChange, change_id)
    if pending is None:
        return AlreadyProcessed(change_id)

    change_type = pending.change_type
    change_data = dict(pending.change_data)
    submitter_id = pending.user_id
    payload = parse_change_payload(change_type, change_data)
    origin_week_number = _week_number(db, pending.week_id)
    if not claim_pending(db, change_id):
        db.rollback()
        return AlreadyProcessed(change_id)

    try:
        results, skipped = _apply(db, change_type, payload, origin_week_number)
    except NotFoundError as exc:
        db.rollback()
        raise ZeroEffectError(f"Approval applied 0 changes, pending request kept: {exc.message}") from exc
    except ScheduleError:
        db.rollback()
        raise
    if not results:
        db.rollback()
        raise ZeroEffectError("Approval applied 0 changes, pending request kept")

    db.commit()
    logger.info(
        "Pending change approved",
        change_id=change_id,
        approver_id=approver.id,
        results=len(results),
        skipped=len(skipped),
    )
    notify_best_effort(
        dispatcher,
        _event(
            "APPROVED",
            change_type,
            approver,
            change_id,
            change_data,
            origin_week_number,
            target_weeks=[change.week_number for change in results],
            submitter_id=submitter_id,
        ),
    )
    return Approved(change_id=change_id, change_type=change_type, results=results, skipped=skipped)


def reject_change(
    db: Session,
    change_id: int,
    approver: User,
    reason: str | None,
    dispatcher: NotificationDispatcher | None = None,
) -> RejectOutcome:
    _require_admin(approver, "reject changes")
    normalize_reason(reason)
    try:
        record = reject_pending(db, change_id, approver.id, reason)
    except NotFoundError:
        db.rollback()
        return AlreadyProcessed(change_id)
    db.commit()

    week_number = db.get(Week, record.week_id).week_number
    notify_best_effort(
        dispatcher,
        _event(
            "REJECTED",
            record.change_type,
            approver,
            change_id,
            record.change_data,
            week_number,
            target_weeks=[week_number, *record.change_data.get("applyToWeeks", [])],
            reason=record.rejection_reason,
            submitter_id=record.user_id,
        ),
    )
    return Rejected(change_id=change_id, record=record)


def cancel_change(db: Session, change_id: int, actor: User) -> CancelOutcome:
    try:
        cancel_pending(db, change_id, actor.id)
    except NotFoundError:
        db.rollback()
        return AlreadyProcessed(change_id)
    db.commit()
    return Cancelled(change_id)


def _week_change_ids(db: Session, week_id: int, change_ids: Iterable[int] | None) -> list[int]:
    if change_ids is not None:
        return list(dict.fromkeys(change_ids))
    # oldest first, the order the requests were made in
    return [change.id for change in reversed(list_pending_for_week(db, week_id))]


def _belongs_to_week(db: Session, change_id: int, week_id: int) -> bool:
    found = db.scalar(select(PendingChange.week_id).where(PendingChange.id == change_id))
    return found is None or found == week_id


def approve_all(
    db: Session,
    week_id: int,
    approver: User,
    change_ids: Iterable[int] | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> list[BulkItemOutcome]:
    _require_admin(approver, "approve changes")
    outcomes: list[BulkItemOutcome] = []
    for change_id in _week_change_ids(db, week_id, change_ids):
        if not _belongs_to_week(db, change_id, week_id):
            outcomes.append(BulkItemOutcome(change_id, error=f"Pending change {change_id} belongs to another week"))
            continue
        try:
            outcomes.append(BulkItemOutcome(change_id, outcome=approve_change(db, change_id, approver, dispatcher)))
        except ScheduleError as exc:
            db.rollback()
            logger.warning("Bulk approval item failed", change_id=change_id, error=exc.message)
            outcomes.append(BulkItemOutcome(change_id, error=exc.message))
    return outcomes


def reject_all(
    db: Session,
    week_id: int,
    approver: User,
    reason: str | None,
    change_ids: Iterable[int] | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> list[BulkItemOutcome]:
    _require_admin(approver, "reject changes")
    normalize_reason(reason)
    outcomes: list[BulkItemOutcome] = []
    for change_id in _week_change_ids(db, week_id, change_ids):
        if not _belongs_to_week(db, change_id, week_id):
            outcomes.append(BulkItemOutcome(change_id, error=f"Pending change {change_id} belongs to another week"))
            continue
        try:
            outcomes.append(BulkItemOutcome(change_id, outcome=reject_change(db, change_id, approver, reason, dispatcher)))
        except ScheduleError as exc:
            db.rollback()
            logger.warning("Bulk rejection item failed", change_id=change_id, error=exc.message)
            outcomes.append(BulkItemOutcome(change_id, error=exc.message))
    return outcomes


def reorder_activity(db: Session, actor: User, activity_id: int, new_index: int) -> Activity:
    _require_admin(actor, "reorder activities")
    activity = set_order_index(db, activity_id, new_index)
    db.commit()
    return activity
