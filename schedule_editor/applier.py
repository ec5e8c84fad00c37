"""Applies ADD/EDIT/DELETE changes to the schedule.

Single-target operations address one day or one activity row. The fan-out
variant locates each week's copy of a recurring activity by value and
applies the same mutation to every copy it finds, skipping weeks it cannot
resolve. Nothing here commits; the caller owns the transaction.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from schedule_editor.errors import NotFoundError, ValidationError, ZeroEffectError
from schedule_editor.matcher import find_matching_activities
from schedule_editor.models import PERIODS, Activity, Day, Label, Week
from schedule_editor.payloads import AddPayload, ChangePayload, DeletePayload, EditPayload

Action = Literal["created", "updated", "deleted"]


@dataclass
class ActivitySnapshot:
    id: int
    day_id: int
    week_number: int
    day_name: str
    time: str
    description: str
    period: str
    order_index: int
    label_ids: list[int] = field(default_factory=list)

    @classmethod
    def of(cls, activity: Activity) -> ActivitySnapshot:
        return cls(
            id=activity.id,
            day_id=activity.day_id,
            week_number=activity.day.week.week_number,
            day_name=activity.day.day_name,
            time=activity.time,
            description=activity.description,
            period=activity.period,
            order_index=activity.order_index,
            label_ids=[label.id for label in activity.labels],
        )


@dataclass
class AppliedChange:
    action: Action
    week_number: int
    activity: ActivitySnapshot


@dataclass
class SkippedTarget:
    week_number: int
    reason: str


@dataclass
class FanOutResult:
    requested_weeks: list[int]
    successes: list[AppliedChange] = field(default_factory=list)
    skipped: list[SkippedTarget] = field(default_factory=list)

    @property
    def applied_weeks(self) -> list[int]:
        return sorted({change.week_number for change in self.successes})

    @property
    def is_partial(self) -> bool:
        return bool(self.successes) and bool(self.skipped)


def _get_activity(db: Session, activity_id: int) -> Activity:
    activity = db.get(Activity, activity_id)
    if activity is None:
        raise NotFoundError(f"Activity {activity_id} not found")
    return activity


def _get_day(db: Session, day_id: int) -> Day:
    day = db.get(Day, day_id)
    if day is None:
        raise NotFoundError(f"Day {day_id} not found")
    return day


def resolve_labels(db: Session, label_ids: Iterable[int] | None) -> list[Label] | None:
    if label_ids is None:
        return None
    wanted = sorted(set(label_ids))
    if not wanted:
        return []
    labels = list(db.scalars(select(Label).where(Label.id.in_(wanted))).all())
    missing = sorted(set(wanted) - {label.id for label in labels})
    if missing:
        raise ValidationError(f"Unknown label ids: {', '.join(str(m) for m in missing)}")
    return labels


def next_order_index(db: Session, day_id: int, period: str) -> int:
    highest = db.scalar(
        select(func.max(Activity.order_index)).where(Activity.day_id == day_id, Activity.period == period)
    )
    return (highest or 0) + 1


def _create(db: Session, day: Day, time: str, description: str, period: str, labels: list[Label] | None) -> Activity:
    if period not in PERIODS:
        raise ValidationError(f"Invalid period: {period!r}")
    activity = Activity(
        day_id=day.id,
        time=time,
        description=description,
        period=period,
        order_index=next_order_index(db, day.id, period),
    )
    activity.day = day
    if labels:
        activity.labels = list(labels)
    db.add(activity)
    db.flush()
    return activity


def _update(activity: Activity, time: str, description: str, labels: list[Label] | None) -> None:
    activity.time = time
    activity.description = description
    if labels is not None:
        activity.labels = list(labels)


def apply_add(
    db: Session,
    day_id: int,
    time: str,
    description: str,
    period: str,
    label_ids: Iterable[int] | None = None,
) -> Activity:
    day = _get_day(db, day_id)
    activity = _create(db, day, time, description, period, resolve_labels(db, label_ids))
    logger.info("Activity created", activity_id=activity.id, day_id=day_id, period=period)
    return activity


def apply_edit(
    db: Session,
    activity_id: int,
    time: str,
    description: str,
    label_ids: Iterable[int] | None = None,
) -> Activity:
    activity = _get_activity(db, activity_id)
    _update(activity, time, description, resolve_labels(db, label_ids))
    db.flush()
    logger.info("Activity updated", activity_id=activity_id)
    return activity


def apply_delete(db: Session, activity_id: int) -> ActivitySnapshot:
    activity = _get_activity(db, activity_id)
    snapshot = ActivitySnapshot.of(activity)
    db.delete(activity)
    db.flush()
    logger.info("Activity deleted", activity_id=activity_id)
    return snapshot


def set_order_index(db: Session, activity_id: int, new_index: int) -> Activity:
    """Move an activity to ``new_index`` within its (day, period) bucket.

    Activities between the old and new position shift by one toward the
    vacated slot, so indices stay unique. Meant for tie-breaking activities
    that share a time; the caller enforces that.
    """
    if new_index < 1:
        raise ValidationError("newOrderIndex must be at least 1")
    activity = _get_activity(db, activity_id)
    old_index = activity.order_index
    if new_index == old_index:
        return activity

    bucket = (
        Activity.day_id == activity.day_id,
        Activity.period == activity.period,
        Activity.id != activity.id,
    )
    if new_index > old_index:
        db.execute(
            update(Activity)
            .where(*bucket, Activity.order_index > old_index, Activity.order_index <= new_index)
            .values(order_index=Activity.order_index - 1)
        )
    else:
        db.execute(
            update(Activity)
            .where(*bucket, Activity.order_index >= new_index, Activity.order_index < old_index)
            .values(order_index=Activity.order_index + 1)
        )
    activity.order_index = new_index
    db.flush()
    logger.info("Activity reordered", activity_id=activity_id, old_index=old_index, new_index=new_index)
    return activity


def resolve_day_name(db: Session, payload: ChangePayload) -> str:
    if payload.day_name:
        return payload.day_name
    if isinstance(payload, AddPayload):
        return _get_day(db, payload.day_id).day_name
    return _get_activity(db, payload.activity_id).day.day_name


def complete_payload(db: Session, payload: ChangePayload) -> ChangePayload:
    """Fill in dayName, and period on DELETE, from the referenced day or activity."""
    if payload.day_name is None:
        payload.day_name = resolve_day_name(db, payload)
    if isinstance(payload, DeletePayload) and payload.period is None:
        payload.period = _get_activity(db, payload.activity_id).period
    return payload


def pre_change_identity(db: Session, payload: EditPayload | DeletePayload) -> tuple[str, str]:
    """The (time, description) the targets carry before the change lands.

    EDIT matches by its old values and writes the new ones; DELETE payloads
    already hold the current values.
    """
    if isinstance(payload, DeletePayload):
        return payload.time, payload.description
    old_time, old_description = payload.old_time, payload.old_description
    if old_time is None or old_description is None:
        current = _get_activity(db, payload.activity_id)
        old_time = old_time if old_time is not None else current.time
        old_description = old_description if old_description is not None else current.description
    return old_time, old_description


def _explain_missing_target(db: Session, week_number: int, day_name: str) -> str:
    week = db.scalar(select(Week).where(Week.week_number == week_number))
    if week is None:
        return "week not found"
    day = db.scalar(select(Day).where(Day.week_id == week.id, Day.day_name == day_name))
    if day is None:
        return f"week has no {day_name}"
    return "no matching activity"


def _resolve_target_day(db: Session, week_number: int, day_name: str) -> Day | None:
    return db.scalar(
        select(Day)
        .join(Week, Day.week_id == Week.id)
        .where(Week.week_number == week_number, Day.day_name == day_name)
    )


def apply_across_weeks(
    db: Session,
    change_type: str,
    payload: ChangePayload,
    origin_week_number: int,
    target_week_numbers: Iterable[int],
) -> FanOutResult:
    """Apply one change to the origin week plus every selected week.

    Weeks that cannot be resolved are skipped and reported. Raises
    ZeroEffectError when no week received the change.
    """
    expected = {"ADD": AddPayload, "EDIT": EditPayload, "DELETE": DeletePayload}.get(change_type)
    if expected is None:
        raise ValidationError(f"Invalid changeType: {change_type!r}")
    if not isinstance(payload, expected):
        raise ValidationError(f"Payload does not match changeType {change_type}")

    weeks = sorted({origin_week_number, *target_week_numbers})
    result = FanOutResult(requested_weeks=weeks)
    day_name = resolve_day_name(db, payload)

    if isinstance(payload, AddPayload):
        labels = resolve_labels(db, payload.label_ids)
        for week_number in weeks:
            day = _resolve_target_day(db, week_number, day_name)
            if day is None:
                _skip(result, week_number, _explain_missing_target(db, week_number, day_name), change_type)
                continue
            activity = _create(db, day, payload.time, payload.description, payload.period, labels)
            result.successes.append(AppliedChange("created", week_number, ActivitySnapshot.of(activity)))
    else:
        match_time, match_description = pre_change_identity(db, payload)
        labels = resolve_labels(db, payload.label_ids) if isinstance(payload, EditPayload) else None
        for week_number in weeks:
            matches = find_matching_activities(db, match_time, match_description, day_name, [week_number])
            if not matches:
                _skip(result, week_number, _explain_missing_target(db, week_number, day_name), change_type)
                continue
            for activity, _ in matches:
                if change_type == "EDIT":
                    _update(activity, payload.time, payload.description, labels)
                    db.flush()
                    result.successes.append(AppliedChange("updated", week_number, ActivitySnapshot.of(activity)))
                else:
                    snapshot = ActivitySnapshot.of(activity)
                    db.delete(activity)
                    db.flush()
                    result.successes.append(AppliedChange("deleted", week_number, snapshot))

    if not result.successes:
        reasons = "; ".join(f"week {s.week_number}: {s.reason}" for s in result.skipped)
        raise ZeroEffectError(f"{change_type} applied to no weeks ({reasons})")

    logger.info(
        "Change applied across weeks",
        change_type=change_type,
        requested_weeks=weeks,
        applied_weeks=result.applied_weeks,
        skipped=len(result.skipped),
    )
    return result


def _skip(result: FanOutResult, week_number: int, reason: str, change_type: str) -> None:
    logger.warning("Skipping target week", change_type=change_type, week_number=week_number, reason=reason)
    result.skipped.append(SkippedTarget(week_number=week_number, reason=reason))
