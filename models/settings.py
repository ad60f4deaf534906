"""Settings record persisted next to the task collection."""
from __future__ import annotations

from typing import Any, Dict, Optional

from sqlmodel import SQLModel

from core.settings import SETTINGS_KEY


_RECORD_KEYS = {
    "default_category": "defaultCategory",
    "default_priority": "defaultPriority",
    "default_reminder_hours": "defaultReminderHours",
    "pin_enabled": "pinEnabled",
    "pin": "pin",
    "theme": "theme",
}


class AppSettings(SQLModel):
    id: str = SETTINGS_KEY
    default_category: str = "personal"
    default_priority: str = "medium"
    default_reminder_hours: int = 2
    pin_enabled: bool = False
    pin: Optional[str] = None
    theme: str = "light"

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"id": self.id}
        for attr, key in _RECORD_KEYS.items():
            record[key] = getattr(self, attr)
        return record

    @classmethod
    def from_record(cls, record: Optional[Dict[str, Any]]) -> "AppSettings":
        # Stored values win over defaults; unknown keys are ignored.
        fields: Dict[str, Any] = {}
        for attr, key in _RECORD_KEYS.items():
            if record and key in record and record[key] is not None:
                fields[attr] = record[key]
        return cls(**fields)


__all__ = ["AppSettings"]
