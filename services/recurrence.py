"""Successor derivation for repeating tasks."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from models.task import Task
from utils.datetime_utils import add_months, add_years, utc_now


def next_due_date(current: datetime, frequency: Optional[str]) -> datetime:
    """Advance ``current`` by one calendar unit of ``frequency``.

    Month and year steps clamp to the last valid day of the target month.
    Unknown frequencies leave the date unchanged.
    """
    if frequency == "daily":
        return current + timedelta(days=1)
    if frequency == "weekly":
        return current + timedelta(days=7)
    if frequency == "monthly":
        return add_months(current, 1)
    if frequency == "yearly":
        return add_years(current, 1)
    return current


def next_occurrence(
    task: Task,
    *,
    new_id: str,
    order: float,
    now: Optional[datetime] = None,
) -> Task:
    """Return the pending successor of the completed repeating ``task``.

    The successor keeps the parent link and every user-visible field; the
    reminder keeps the same lead time before the new due date.
    """
    due_date: Optional[datetime] = None
    reminder: Optional[datetime] = None
    if task.due_date is not None:
        due_date = next_due_date(task.due_date, task.repeat_frequency)
        if task.reminder is not None:
            lead = task.due_date - task.reminder
            reminder = due_date - lead

    return task.model_copy(
        update={
            "id": new_id,
            "tags": list(task.tags),
            "due_date": due_date,
            "reminder": reminder,
            "completed": False,
            "completed_at": None,
            "created_at": now or utc_now(),
            "order": order,
            "previous_instance_id": task.id,
        }
    )


__all__ = ["next_due_date", "next_occurrence"]
