from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as ModelValidationError

from core.priorities import normalize_category, normalize_priority
from core.settings import TASK_STORE
from models.settings import AppSettings
from models.task import Task
from storage.store import KeyValueStore
from utils.datetime_utils import epoch_millis, parse_timestamp, utc_now


logger = logging.getLogger("taskmaster.storage")


def _upgrade_record(record: Dict[str, Any], settings: AppSettings) -> Dict[str, Any]:
    """Fill fields that records written by older versions may lack."""
    data = dict(record)
    if not isinstance(data.get("tags"), list):
        data["tags"] = []
    data["priority"] = normalize_priority(data.get("priority"), settings.default_priority)
    data["category"] = normalize_category(data.get("category"), settings.default_category)
    data.setdefault("previousInstanceId", None)
    data.setdefault("parentId", None)
    data["collapsed"] = bool(data.get("collapsed") or False)
    if data.get("order") in (None, ""):
        created = parse_timestamp(data.get("createdAt")) or utc_now()
        data["order"] = epoch_millis(created)
    return data


def load_tasks(store: KeyValueStore, settings: Optional[AppSettings] = None) -> List[Task]:
    defaults = settings or AppSettings()
    tasks: List[Task] = []
    for record in store.get_all(TASK_STORE):
        try:
            tasks.append(Task.from_record(_upgrade_record(record, defaults)))
        except (ModelValidationError, TypeError, ValueError) as exc:
            logger.warning("Skipping unreadable task record %s: %s", record.get("id"), exc)
    return tasks


def save_tasks(store: KeyValueStore, tasks: Iterable[Task]) -> None:
    store.replace_all(TASK_STORE, [task.to_record() for task in tasks])


__all__ = ["load_tasks", "save_tasks"]
