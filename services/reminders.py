"""Which pending tasks are due for a reminder notification."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, MutableMapping, Optional

from core.settings import ENGINE
from models.task import Task
from utils.datetime_utils import to_local_string


def due_reminders(
    tasks: Iterable[Task],
    now: datetime,
    *,
    window_seconds: int = ENGINE.reminder_window_seconds,
    notified: Optional[MutableMapping[str, str]] = None,
) -> List[Task]:
    """Pending tasks whose reminder falls in ``(now, now + window]``.

    ``notified`` maps task id to the reminder value already announced; it is
    updated in place so a reminder fires once per value.
    """
    horizon = now + timedelta(seconds=window_seconds)
    due: List[Task] = []
    for task in tasks:
        if task.completed or task.reminder is None:
            continue
        if not (now < task.reminder <= horizon):
            continue
        stamp = to_local_string(task.reminder) or ""
        if notified is not None:
            if notified.get(task.id) == stamp:
                continue
            notified[task.id] = stamp
        due.append(task)
    return due


__all__ = ["due_reminders"]
