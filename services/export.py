"""Read-only projections of the task collection for export writers."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List

from core.settings import EXPORT_VERSION
from models.task import Task
from utils.datetime_utils import to_local_string


def export_payload(tasks: Iterable[Task], now: datetime) -> Dict[str, Any]:
    records = [task.to_record() for task in tasks]
    return {
        "exportedAt": now.isoformat(),
        "version": EXPORT_VERSION,
        "totalTasks": len(records),
        "tasks": records,
    }


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


def export_rows(tasks: Iterable[Task]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for task in tasks:
        rows.append(
            {
                "ID": task.id,
                "Title": task.title,
                "Description": task.description,
                "Category": task.category,
                "Priority": task.priority,
                "Due Date": to_local_string(task.due_date) or "",
                "Reminder": to_local_string(task.reminder) or "",
                "Repeat": _yes_no(task.repeat),
                "Repeat Frequency": task.repeat_frequency or "",
                "Tags": ", ".join(task.tags),
                "Completed": _yes_no(task.completed),
                "Created At": task.created_at.isoformat(),
                "Completed At": task.completed_at.isoformat() if task.completed_at else "",
                "Previous Instance ID": task.previous_instance_id or "",
                "Order": task.order,
                "Parent ID": task.parent_id or "",
            }
        )
    return rows


__all__ = ["export_payload", "export_rows"]
