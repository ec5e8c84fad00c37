from __future__ import annotations

import pytest
from conftest import add_activity, add_label, day_of
from sqlalchemy import select

from schedule_editor.applier import (
    apply_across_weeks,
    apply_add,
    apply_delete,
    apply_edit,
    next_order_index,
    set_order_index,
)
from schedule_editor.errors import NotFoundError, ValidationError, ZeroEffectError
from schedule_editor.matcher import find_matching_weeks
from schedule_editor.models import Activity
from schedule_editor.payloads import parse_change_payload


def bucket_indices(db, day_id: int, period: str = "MORNING") -> list[tuple[str, int]]:
    rows = db.scalars(
        select(Activity).where(Activity.day_id == day_id, Activity.period == period).order_by(Activity.order_index)
    ).all()
    return [(row.description, row.order_index) for row in rows]


def test_add_appends_to_end_of_bucket(db, weeks):
    monday = day_of(db, 1, "Monday")
    first = apply_add(db, monday.id, "08:00", "Breakfast", "MORNING")
    second = apply_add(db, monday.id, "07:00", "Wake up", "MORNING")
    evening = apply_add(db, monday.id, "19:00", "Vespers", "EVENING")
    db.commit()

    assert (first.order_index, second.order_index) == (1, 2)
    assert evening.order_index == 1


def test_add_after_delete_never_reuses_an_index(db, weeks):
    monday = day_of(db, 1, "Monday")
    a = apply_add(db, monday.id, "06:00", "A", "MORNING")
    apply_add(db, monday.id, "06:00", "B", "MORNING")
    apply_add(db, monday.id, "06:00", "C", "MORNING")
    apply_delete(db, a.id)
    apply_add(db, monday.id, "06:00", "D", "MORNING")
    db.commit()

    indices = [index for _, index in bucket_indices(db, monday.id)]
    assert len(indices) == len(set(indices))
    assert bucket_indices(db, monday.id)[-1] == ("D", 4)


def test_add_rejects_unknown_day_and_period(db, weeks):
    with pytest.raises(NotFoundError):
        apply_add(db, 9999, "08:00", "Breakfast", "MORNING")
    monday = day_of(db, 1, "Monday")
    with pytest.raises(ValidationError):
        apply_add(db, monday.id, "08:00", "Breakfast", "NIGHT")


def test_edit_updates_values_and_labels(db, weeks):
    label = add_label(db, "Worship")
    activity = add_activity(db, 1, "Monday", "06:00", "Prayer")

    updated = apply_edit(db, activity.id, "06:30", "Morning Prayer", [label.id])
    db.commit()

    assert (updated.time, updated.description) == ("06:30", "Morning Prayer")
    assert [item.name for item in updated.labels] == ["Worship"]


def test_edit_with_unknown_label_is_rejected(db, weeks):
    activity = add_activity(db, 1, "Monday", "06:00", "Prayer")
    with pytest.raises(ValidationError, match="Unknown label ids: 42"):
        apply_edit(db, activity.id, "06:30", "Prayer", [42])


def test_delete_returns_snapshot_of_removed_row(db, weeks):
    activity = add_activity(db, 2, "Tuesday", "12:00", "Lunch", period="AFTERNOON")

    snapshot = apply_delete(db, activity.id)
    db.commit()

    assert snapshot.week_number == 2
    assert snapshot.day_name == "Tuesday"
    assert snapshot.description == "Lunch"
    assert db.get(Activity, activity.id) is None
    with pytest.raises(NotFoundError):
        apply_delete(db, activity.id)


def test_reorder_shifts_neighbours(db, weeks):
    monday = day_of(db, 1, "Monday")
    a = add_activity(db, 1, "Monday", "06:00", "A")
    add_activity(db, 1, "Monday", "06:00", "B")
    c = add_activity(db, 1, "Monday", "06:00", "C")

    set_order_index(db, c.id, 1)
    db.commit()
    assert bucket_indices(db, monday.id) == [("C", 1), ("A", 2), ("B", 3)]

    set_order_index(db, a.id, 3)
    db.commit()
    assert bucket_indices(db, monday.id) == [("C", 1), ("B", 2), ("A", 3)]


def test_reorder_rejects_index_below_one(db, weeks):
    activity = add_activity(db, 1, "Monday", "06:00", "A")
    with pytest.raises(ValidationError):
        set_order_index(db, activity.id, 0)


def test_next_order_index_starts_at_one(db, weeks):
    monday = day_of(db, 1, "Monday")
    assert next_order_index(db, monday.id, "EVENING") == 1


def test_fan_out_add_creates_recurring_activity(db, weeks):
    monday = day_of(db, 1, "Monday")
    payload = parse_change_payload(
        "ADD",
        {"dayId": monday.id, "time": "06:00", "description": "Prayer Watch Post", "period": "MORNING", "applyToWeeks": [3]},
    )

    result = apply_across_weeks(db, "ADD", payload, 1, payload.apply_to_weeks)
    db.commit()

    assert result.applied_weeks == [1, 3]
    assert result.skipped == []
    assert find_matching_weeks(db, "06:00", "Prayer Watch Post", "Monday") == [1, 3]


def test_fan_out_edit_matches_old_values_in_each_week(db, weeks):
    origin = add_activity(db, 1, "Monday", "06:00", "Prayer Watch Post")
    add_activity(db, 3, "Monday", "06:00", "Prayer Watch Post")
    untouched = add_activity(db, 2, "Monday", "06:00", "Prayer Watch Post")
    payload = parse_change_payload(
        "EDIT",
        {
            "activityId": origin.id,
            "time": "06:30",
            "description": "Prayer Watch Post",
            "oldTime": "06:00",
            "oldDescription": "Prayer Watch Post",
            "dayName": "Monday",
            "applyToWeeks": [3],
        },
    )

    result = apply_across_weeks(db, "EDIT", payload, 1, payload.apply_to_weeks)
    db.commit()

    assert len(result.successes) == 2
    assert {change.week_number for change in result.successes} == {1, 3}
    assert all(change.activity.time == "06:30" for change in result.successes)
    db.refresh(untouched)
    assert untouched.time == "06:00"


def test_fan_out_skips_unresolvable_weeks(db, weeks):
    origin = add_activity(db, 1, "Wednesday", "18:00", "Bible Study", period="EVENING")
    payload = parse_change_payload(
        "DELETE",
        {"activityId": origin.id, "time": "18:00", "description": "Bible Study", "dayName": "Wednesday", "applyToWeeks": [2, 99]},
    )

    result = apply_across_weeks(db, "DELETE", payload, 1, payload.apply_to_weeks)
    db.commit()

    assert result.applied_weeks == [1]
    assert result.is_partial
    reasons = {item.week_number: item.reason for item in result.skipped}
    assert reasons == {2: "no matching activity", 99: "week not found"}


def test_fan_out_with_no_effect_raises(db, weeks):
    origin = add_activity(db, 1, "Wednesday", "18:00", "Bible Study", period="EVENING")
    payload = parse_change_payload(
        "DELETE",
        {"activityId": origin.id, "time": "18:00", "description": "Different", "dayName": "Wednesday", "applyToWeeks": [99]},
    )

    with pytest.raises(ZeroEffectError):
        apply_across_weeks(db, "DELETE", payload, 1, payload.apply_to_weeks)


def test_fan_out_rejects_payload_of_another_change_type(db, weeks):
    origin = add_activity(db, 1, "Monday", "06:00", "Prayer Watch Post")
    payload = parse_change_payload(
        "EDIT", {"activityId": origin.id, "time": "06:30", "description": "Prayer Watch Post", "applyToWeeks": [3]}
    )

    with pytest.raises(ValidationError, match="does not match changeType ADD"):
        apply_across_weeks(db, "ADD", payload, 1, payload.apply_to_weeks)
    with pytest.raises(ValidationError, match="Invalid changeType"):
        apply_across_weeks(db, "MOVE", payload, 1, payload.apply_to_weeks)
    db.refresh(origin)
    assert origin.time == "06:00"
