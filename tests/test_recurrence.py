from datetime import datetime, timezone

import pytest

from models import Task, TaskDraft
from services.recurrence import next_due_date, next_occurrence
from services.task_store import TaskStore


NOW = datetime(2024, 2, 1, 7, 0, tzinfo=timezone.utc)


def _recurring(frequency, due, reminder=None, **extra):
    return Task(
        id="100",
        title="Recurring",
        due_date=due,
        reminder=reminder,
        repeat=True,
        repeat_frequency=frequency,
        completed=True,
        completed_at=NOW,
        order=4.0,
        **extra,
    )


def test_daily_successor_keeps_reminder_offset():
    task = _recurring("daily", datetime(2024, 1, 31, 9, 0), datetime(2024, 1, 31, 8, 0))

    successor = next_occurrence(task, new_id="101", order=5.0, now=NOW)

    assert successor.due_date == datetime(2024, 2, 1, 9, 0)
    assert successor.reminder == datetime(2024, 2, 1, 8, 0)
    assert successor.id == "101"
    assert successor.previous_instance_id == "100"
    assert successor.completed is False
    assert successor.completed_at is None
    assert successor.created_at == NOW
    assert successor.order == 5.0
    assert task.due_date == datetime(2024, 1, 31, 9, 0)


def test_monthly_from_january_31_clamps_to_leap_february():
    task = _recurring("monthly", datetime(2024, 1, 31, 0, 0))
    successor = next_occurrence(task, new_id="101", order=5.0, now=NOW)
    assert successor.due_date == datetime(2024, 2, 29, 0, 0)


def test_yearly_from_leap_day_clamps_to_february_28():
    task = _recurring("yearly", datetime(2024, 2, 29, 18, 30))
    successor = next_occurrence(task, new_id="101", order=5.0, now=NOW)
    assert successor.due_date == datetime(2025, 2, 28, 18, 30)


@pytest.mark.parametrize(
    "frequency, expected",
    [
        ("daily", datetime(2024, 3, 1, 10, 0)),
        ("weekly", datetime(2024, 3, 7, 10, 0)),
        ("monthly", datetime(2024, 3, 29, 10, 0)),
        ("yearly", datetime(2025, 2, 28, 10, 0)),
    ],
)
def test_next_due_date_units(frequency, expected):
    assert next_due_date(datetime(2024, 2, 29, 10, 0), frequency) == expected


def test_reminder_offset_survives_month_clamp():
    task = _recurring("monthly", datetime(2024, 1, 31, 9, 0), datetime(2024, 1, 30, 21, 0))
    successor = next_occurrence(task, new_id="101", order=5.0, now=NOW)
    assert successor.due_date == datetime(2024, 2, 29, 9, 0)
    assert successor.reminder == datetime(2024, 2, 28, 21, 0)


def test_no_due_date_means_no_due_date_and_no_reminder():
    task = _recurring("daily", None, None)
    successor = next_occurrence(task, new_id="101", order=5.0, now=NOW)
    assert successor.due_date is None
    assert successor.reminder is None


def test_successor_keeps_parent_and_copies_tags():
    task = _recurring("weekly", datetime(2024, 1, 1, 9, 0), parent_id="7", tags=["gym"])
    successor = next_occurrence(task, new_id="101", order=5.0, now=NOW)

    assert successor.parent_id == "7"
    assert successor.tags == ["gym"]
    successor.tags.append("legs")
    assert task.tags == ["gym"]


def test_successor_is_appended_and_never_auto_completed():
    store = TaskStore()
    parent = store.create(TaskDraft(title="Health"))
    task = store.create(
        TaskDraft(
            title="Vitamins",
            parent_id=parent.id,
            repeat=True,
            repeat_frequency="daily",
            due_date=datetime(2024, 5, 1, 8, 0),
        )
    )
    store.create(TaskDraft(title="Later"))

    result = store.set_completed(task.id, True)

    successor = result.successor
    assert store.all()[-1] is successor
    assert successor.order == 4.0
    assert successor.completed is False
    assert successor.parent_id == parent.id
    assert store.successors_of(successor.id) == []
