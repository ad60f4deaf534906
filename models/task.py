# taskmaster/models/task.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Field, SQLModel

from utils.datetime_utils import (
    parse_local_datetime,
    parse_timestamp,
    to_local_string,
    utc_now,
)


# attribute name -> persisted/exported key
RECORD_KEYS: Dict[str, str] = {
    "id": "id",
    "title": "title",
    "description": "description",
    "category": "category",
    "priority": "priority",
    "due_date": "dueDate",
    "reminder": "reminder",
    "repeat": "repeat",
    "repeat_frequency": "repeatFrequency",
    "tags": "tags",
    "completed": "completed",
    "completed_at": "completedAt",
    "created_at": "createdAt",
    "order": "order",
    "parent_id": "parentId",
    "previous_instance_id": "previousInstanceId",
    "collapsed": "collapsed",
}

_LOCAL_FIELDS = ("due_date", "reminder")
_TIMESTAMP_FIELDS = ("completed_at", "created_at")


class Task(SQLModel):
    id: str
    title: str
    description: str = ""
    category: str = "personal"
    priority: str = "medium"
    due_date: Optional[datetime] = None
    reminder: Optional[datetime] = None
    repeat: bool = False
    repeat_frequency: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    order: float = 0.0
    parent_id: Optional[str] = None
    previous_instance_id: Optional[str] = None
    collapsed: bool = False

    def copy_record(self) -> "Task":
        """Independent copy; ``tags`` is the only mutable field."""
        return self.model_copy(update={"tags": list(self.tags)})

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        for attr, key in RECORD_KEYS.items():
            value = getattr(self, attr)
            if attr in _LOCAL_FIELDS:
                value = to_local_string(value)
            elif attr in _TIMESTAMP_FIELDS:
                value = value.isoformat() if value is not None else None
            elif attr == "tags":
                value = list(value)
            record[key] = value
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Task":
        """Build a task from a persisted camelCase record."""
        fields: Dict[str, Any] = {}
        for attr, key in RECORD_KEYS.items():
            if key not in record:
                continue
            value = record[key]
            if attr in _LOCAL_FIELDS:
                value = parse_local_datetime(value)
            elif attr in _TIMESTAMP_FIELDS:
                value = parse_timestamp(value)
                if value is None and attr == "created_at":
                    continue
            elif attr == "tags":
                value = [str(tag) for tag in value] if isinstance(value, list) else []
            elif attr in ("id", "parent_id", "previous_instance_id") and value is not None:
                value = str(value)
            fields[attr] = value
        return cls(**fields)


class TaskDraft(SQLModel):
    """User input for a new task; unset optional fields take settings defaults."""

    title: str
    description: str = ""
    category: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[datetime] = None
    reminder: Optional[datetime] = None
    repeat: bool = False
    repeat_frequency: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    parent_id: Optional[str] = None


EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "priority",
        "due_date",
        "reminder",
        "repeat",
        "repeat_frequency",
        "tags",
        "parent_id",
        "order",
        "collapsed",
    }
)


__all__ = ["EDITABLE_FIELDS", "RECORD_KEYS", "Task", "TaskDraft"]
