from __future__ import annotations

import pytest
from conftest import week_of

from schedule_editor.errors import AuthorizationError, NotFoundError, ValidationError
from schedule_editor.models import PendingChange
from schedule_editor.pending import submit_pending
from schedule_editor.rejections import list_rejected_for_user, mark_all_read, mark_read, reject_pending

PAYLOAD = {"dayId": 1, "time": "06:00", "description": "Prayer", "period": "MORNING", "applyToWeeks": [2]}


def submit(db, user, week_number: int = 1) -> PendingChange:
    change = submit_pending(db, week_of(db, week_number).id, "ADD", PAYLOAD, user)
    db.commit()
    return change


def test_reject_moves_change_into_log(db, weeks, admin, support):
    change = submit(db, support)

    record = reject_pending(db, change.id, admin.id, "  Duplicate of an existing slot  ")
    db.commit()

    assert db.get(PendingChange, change.id) is None
    assert record.rejection_reason == "Duplicate of an existing slot"
    assert record.user_id == support.id
    assert record.rejected_by == admin.id
    assert record.change_data == PAYLOAD
    assert record.is_read is False


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_reject_requires_reason_and_keeps_pending(db, weeks, admin, support, reason):
    change = submit(db, support)

    with pytest.raises(ValidationError, match="Rejection reason is required"):
        reject_pending(db, change.id, admin.id, reason)
    assert db.get(PendingChange, change.id) is not None


def test_reject_missing_change(db, weeks, admin):
    with pytest.raises(NotFoundError):
        reject_pending(db, 404, admin.id, "gone")


def test_mark_read_lifecycle(db, weeks, admin, support, other_support):
    first = reject_pending(db, submit(db, support).id, admin.id, "no")
    second = reject_pending(db, submit(db, support, 2).id, admin.id, "still no")
    db.commit()

    items, unread = list_rejected_for_user(db, support.id)
    assert [item.id for item in items] == [second.id, first.id]
    assert unread == 2

    with pytest.raises(AuthorizationError, match="Access denied"):
        mark_read(db, first.id, other_support.id)
    with pytest.raises(NotFoundError):
        mark_read(db, 9999, support.id)

    mark_read(db, first.id, support.id)
    db.commit()
    assert list_rejected_for_user(db, support.id)[1] == 1

    assert mark_all_read(db, support.id) == 1
    db.commit()
    assert list_rejected_for_user(db, support.id)[1] == 0
    assert list_rejected_for_user(db, other_support.id) == ([], 0)
