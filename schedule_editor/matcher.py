"""Recurring-activity matching.

Activities in different weeks are the same recurring activity exactly when
their (day name, time, description) tuples are equal. Nothing links them in
storage; every lookup is a scan by value.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from schedule_editor.models import Activity, Day, Week


def find_matching_activities(
    db: Session,
    time: str,
    description: str,
    day_name: str,
    week_numbers: Iterable[int] | None = None,
) -> list[tuple[Activity, int]]:
    """Return (activity, week_number) pairs matching the tuple exactly.

    Matching is case-sensitive with no trimming. When ``week_numbers`` is
    given, only those weeks are searched.
    """
    query = (
        select(Activity, Week.week_number)
        .join(Day, Activity.day_id == Day.id)
        .join(Week, Day.week_id == Week.id)
        .where(
            Activity.time == time,
            Activity.description == description,
            Day.day_name == day_name,
        )
        .order_by(Week.week_number, Activity.order_index, Activity.id)
    )
    if week_numbers is not None:
        numbers = sorted(set(week_numbers))
        if not numbers:
            return []
        query = query.where(Week.week_number.in_(numbers))
    return [(activity, week_number) for activity, week_number in db.execute(query).all()]


def find_matching_weeks(db: Session, time: str, description: str, day_name: str) -> list[int]:
    matches = find_matching_activities(db, time, description, day_name)
    return sorted({week_number for _, week_number in matches})
