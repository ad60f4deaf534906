# taskmaster/services/task_store.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from pydantic import ValidationError as ModelValidationError

from core.errors import BlockedByRecurrenceSuccessor, ValidationError
from core.priorities import (
    is_priority,
    normalize_category,
    normalize_frequency,
)
from core.settings import ENGINE, EnginePolicy
from models.settings import AppSettings
from models.task import EDITABLE_FIELDS, Task, TaskDraft
from services.recurrence import next_occurrence
from utils.datetime_utils import parse_local_datetime, utc_now


logger = logging.getLogger("taskmaster.store")

EVENTS = ("after_create", "after_update", "after_delete", "after_replace")


@dataclass(frozen=True)
class DeleteResult:
    removed_ids: frozenset


@dataclass(frozen=True)
class BulkDeleteResult:
    removed_ids: frozenset
    blocked_ids: frozenset = frozenset()


@dataclass(frozen=True)
class CompletionResult:
    task: Task
    successor: Optional[Task] = None
    removed_ids: frozenset = field(default_factory=frozenset)


def _clean_tags(tags: Any) -> List[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    return [str(tag).strip() for tag in tags if tag is not None and str(tag).strip()]


def _coerce_values(values: Dict[str, Any], fields: Iterable[str]) -> None:
    """Bring loosely typed input for ``fields`` onto the stored representation.

    Due dates and reminders become naive local datetimes; aware values are
    shifted to local wall-clock time first.
    """
    for key in fields:
        if key in ("due_date", "reminder"):
            raw = values.get(key)
            parsed = parse_local_datetime(raw)
            if parsed is None and raw not in (None, ""):
                raise ValidationError(f"Invalid {key}: {raw!r}")
            values[key] = parsed
        elif key == "tags":
            values[key] = _clean_tags(values.get(key))


def _validate_values(values: Dict[str, Any]) -> None:
    title = (values.get("title") or "").strip()
    if not title:
        raise ValidationError("Task title is required")
    priority = values.get("priority")
    if priority is not None and not is_priority(priority):
        raise ValidationError(f"Unsupported priority: {priority}")
    due_date = values.get("due_date")
    reminder = values.get("reminder")
    if due_date is not None and reminder is not None and reminder > due_date:
        raise ValidationError("Reminder must not be later than the due date")
    if values.get("repeat") and normalize_frequency(values.get("repeat_frequency")) is None:
        raise ValidationError("Repeating tasks need a frequency (daily, weekly, monthly, yearly)")


class TaskStore:
    """Authoritative in-memory task collection.

    Tasks are kept in insertion order, which is also the tie-break order for
    sorting and duplicate detection. Operations on unknown ids return ``None``.
    """

    def __init__(
        self,
        tasks: Optional[Iterable[Task]] = None,
        *,
        defaults: Optional[AppSettings] = None,
        policy: EnginePolicy = ENGINE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.defaults = defaults or AppSettings()
        self.policy = policy
        self._clock = clock
        self._tasks: List[Task] = list(tasks or [])
        self._index: Dict[str, Task] = {}
        self._last_stamp: Optional[int] = None
        self._stamp_seq = 0
        self._listeners: Dict[str, List[Callable[[Tuple[str, ...]], None]]] = {
            event: [] for event in EVENTS
        }
        self._reindex()

    # ---------- events ----------
    def subscribe(self, event: str, callback: Callable[[Tuple[str, ...]], None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unsupported event: {event}")
        self._listeners[event].append(callback)

    def unsubscribe(self, event: str, callback) -> None:
        if event not in self._listeners:
            return
        if callback in self._listeners[event]:
            self._listeners[event].remove(callback)

    def _emit(self, event: str, task_ids: Iterable[str]) -> None:
        ids = tuple(task_ids)
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(ids)
            except Exception:
                logger.exception("Listener for %s failed", event)

    # ---------- lookup ----------
    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks))

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._index

    def all(self) -> List[Task]:
        return list(self._tasks)

    def find_by_id(self, task_id: Optional[str]) -> Optional[Task]:
        if task_id is None:
            return None
        return self._index.get(task_id)

    def children_of(self, task_id: str) -> List[Task]:
        return [t for t in self._tasks if t.parent_id == task_id]

    def descendants_of(self, task_id: str) -> List[str]:
        """Transitive children of ``task_id`` (breadth first, cycle safe)."""
        children: Dict[str, List[str]] = {}
        for task in self._tasks:
            if task.parent_id is not None:
                children.setdefault(task.parent_id, []).append(task.id)

        result: List[str] = []
        visited: Set[str] = {task_id}
        queue = list(children.get(task_id, []))
        while queue:
            current = queue.pop(0)
            if current in visited:
                continue
            visited.add(current)
            result.append(current)
            queue.extend(children.get(current, []))
        return result

    def successors_of(self, task_id: str) -> List[Task]:
        return [t for t in self._tasks if t.previous_instance_id == task_id]

    # ---------- ids & ordering ----------
    def new_id(self) -> str:
        stamp = int(self._clock().timestamp() * 1000)
        if stamp == self._last_stamp:
            self._stamp_seq += 1
        else:
            self._last_stamp = stamp
            self._stamp_seq = 0
        while True:
            candidate = str(stamp) if self._stamp_seq == 0 else f"{stamp}-{self._stamp_seq}"
            if candidate not in self._index:
                return candidate
            self._stamp_seq += 1

    def next_order(self) -> float:
        if not self._tasks:
            return 1.0
        return max(t.order for t in self._tasks) + 1.0

    # ---------- mutations ----------
    def create(self, draft: TaskDraft) -> Task:
        values = draft.model_dump()
        values["title"] = (values.get("title") or "").strip()
        if values.get("priority") is None:
            values["priority"] = self.defaults.default_priority
        values["category"] = normalize_category(values.get("category"), self.defaults.default_category)
        _coerce_values(values, ("due_date", "reminder", "tags"))
        _validate_values(values)

        repeat = bool(values["repeat"])
        task = Task(
            id=self.new_id(),
            title=values["title"],
            description=(values.get("description") or "").strip(),
            category=values["category"],
            priority=values["priority"],
            due_date=values["due_date"],
            reminder=values["reminder"],
            repeat=repeat,
            repeat_frequency=normalize_frequency(values.get("repeat_frequency")) if repeat else None,
            tags=values["tags"],
            created_at=self._clock(),
            order=self.next_order(),
            parent_id=values.get("parent_id"),
        )
        self._append(task)
        logger.debug("Task created id=%s parent=%s", task.id, task.parent_id)
        self._emit("after_create", (task.id,))
        return task

    def insert_many(self, tasks: Sequence[Task]) -> List[Task]:
        inserted: List[Task] = []
        for task in tasks:
            if not task.id or task.id in self._index:
                task.id = self.new_id()
            self._append(task)
            inserted.append(task)
        if inserted:
            self._emit("after_create", [t.id for t in inserted])
        return inserted

    def update(self, task_id: str, **patch: Any) -> Optional[Task]:
        task = self.find_by_id(task_id)
        if task is None:
            logger.debug("Update skipped, task %s not found", task_id)
            return None
        unknown = set(patch) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported task fields: {', '.join(sorted(unknown))}")

        values = task.model_dump()
        values.update(patch)
        if "title" in patch:
            values["title"] = (patch["title"] or "").strip()
        if "category" in patch:
            values["category"] = normalize_category(patch["category"], self.defaults.default_category)
        _coerce_values(values, patch)
        # Attribute assignment is not validated, so check the merged record first.
        try:
            checked = Task.model_validate(values)
        except ModelValidationError as exc:
            raise ValidationError(f"Invalid task fields: {exc}") from exc
        _validate_values(checked.model_dump())
        if checked.parent_id == task.id:
            raise ValidationError("A task cannot be its own parent")

        for key in patch:
            setattr(task, key, getattr(checked, key))
        if task.repeat:
            task.repeat_frequency = normalize_frequency(task.repeat_frequency)
        else:
            task.repeat_frequency = None
        logger.debug("Task updated id=%s fields=%s", task.id, sorted(patch))
        self._emit("after_update", (task.id,))
        return task

    def delete(self, task_id: str) -> Optional[DeleteResult]:
        """Remove ``task_id`` and all of its descendants, or nothing at all."""
        if task_id not in self._index:
            logger.debug("Delete skipped, task %s not found", task_id)
            return None
        doomed = {task_id, *self.descendants_of(task_id)}
        blockers = self._blockers(doomed)
        if blockers:
            logger.warning("Delete of %s blocked by recurrence successors %s", task_id, blockers)
            raise BlockedByRecurrenceSuccessor(sorted(blockers), sorted(blockers.values()))
        self._remove(doomed)
        return DeleteResult(removed_ids=frozenset(doomed))

    def delete_many(self, task_ids: Iterable[str]) -> BulkDeleteResult:
        """Delete every selected subtree that no surviving successor depends on."""
        roots = [tid for tid in dict.fromkeys(task_ids) if tid in self._index]
        subtrees = {root: {root, *self.descendants_of(root)} for root in roots}
        withheld: Set[str] = set()
        blocked: Set[str] = set()
        while True:
            doomed: Set[str] = set()
            for root, ids in subtrees.items():
                if root not in withheld:
                    doomed |= ids
            newly_withheld = False
            for root, ids in subtrees.items():
                if root in withheld:
                    continue
                blockers = self._blockers(ids, doomed)
                if blockers:
                    withheld.add(root)
                    blocked |= set(blockers)
                    newly_withheld = True
            if not newly_withheld:
                break

        if blocked:
            logger.warning("Bulk delete withheld %d blocked task(s): %s", len(blocked), sorted(blocked))
        self._remove(doomed)
        return BulkDeleteResult(removed_ids=frozenset(doomed), blocked_ids=frozenset(blocked))

    def clear(self) -> int:
        removed = [t.id for t in self._tasks]
        self._tasks = []
        self._reindex()
        self._emit("after_delete", removed)
        return len(removed)

    def set_completed(self, task_id: str, completed: bool) -> Optional[CompletionResult]:
        task = self.find_by_id(task_id)
        if task is None:
            return None
        if task.completed == completed:
            return CompletionResult(task=task)

        if completed:
            task.completed = True
            task.completed_at = self._clock()
            successor = None
            if task.repeat:
                successor = next_occurrence(
                    task, new_id=self.new_id(), order=self.next_order(), now=self._clock()
                )
                self._append(successor)
                logger.debug("Recurring task %s produced successor %s", task.id, successor.id)
                self._emit("after_create", (successor.id,))
            self._emit("after_update", (task.id,))
            return CompletionResult(task=task, successor=successor)

        # Successors are looked up even if repeat was switched off after completion.
        doomed: Set[str] = set()
        for successor in self.successors_of(task.id):
            if successor.completed:
                raise BlockedByRecurrenceSuccessor([successor.id], [t.id for t in self.successors_of(successor.id)])
            doomed |= {successor.id, *self.descendants_of(successor.id)}
        blockers = self._blockers(doomed)
        if blockers:
            raise BlockedByRecurrenceSuccessor(sorted(blockers), sorted(blockers.values()))
        task.completed = False
        task.completed_at = None
        if doomed:
            self._remove(doomed)
            logger.debug("Removed pending successor(s) %s of %s", sorted(doomed), task.id)
        self._emit("after_update", (task.id,))
        return CompletionResult(task=task, removed_ids=frozenset(doomed))

    def toggle_completed(self, task_id: str) -> Optional[CompletionResult]:
        task = self.find_by_id(task_id)
        if task is None:
            return None
        return self.set_completed(task_id, not task.completed)

    def toggle_collapsed(self, task_id: str) -> Optional[Task]:
        task = self.find_by_id(task_id)
        if task is None:
            return None
        task.collapsed = not task.collapsed
        self._emit("after_update", (task.id,))
        return task

    def move(
        self,
        task_id: str,
        *,
        before_id: Optional[str] = None,
        after_id: Optional[str] = None,
    ) -> Optional[Task]:
        """Reposition ``task_id`` among its siblings by giving it a new ``order``."""
        task = self.find_by_id(task_id)
        if task is None:
            return None
        anchor_id = before_id or after_id
        if anchor_id == task_id:
            return task
        siblings = sorted(
            (t for t in self._tasks if t.parent_id == task.parent_id and t.id != task_id),
            key=lambda t: t.order,
        )
        gap = self.policy.reorder_gap

        if anchor_id is None:
            task.order = (siblings[-1].order + gap) if siblings else gap
        else:
            positions = [t.id for t in siblings]
            if anchor_id not in positions:
                return None
            index = positions.index(anchor_id)
            anchor = siblings[index]
            if before_id is not None:
                if index == 0:
                    task.order = anchor.order - gap
                else:
                    task.order = (siblings[index - 1].order + anchor.order) / 2
            else:
                if index == len(siblings) - 1:
                    task.order = anchor.order + gap
                else:
                    task.order = (anchor.order + siblings[index + 1].order) / 2
        self._emit("after_update", (task.id,))
        return task

    # ---------- snapshots ----------
    def snapshot(self) -> Tuple[Task, ...]:
        return tuple(task.copy_record() for task in self._tasks)

    def restore(self, tasks: Iterable[Task]) -> None:
        self.replace_all(task.copy_record() for task in tasks)

    def replace_all(self, tasks: Iterable[Task]) -> None:
        self._tasks = list(tasks)
        self._reindex()
        self._emit("after_replace", [t.id for t in self._tasks])

    # ---------- internals ----------
    def _append(self, task: Task) -> None:
        self._tasks.append(task)
        self._index[task.id] = task

    def _remove(self, ids: Set[str]) -> None:
        if not ids:
            return
        self._tasks = [t for t in self._tasks if t.id not in ids]
        self._reindex()
        self._emit("after_delete", sorted(ids))

    def _reindex(self) -> None:
        self._index = {t.id: t for t in self._tasks}

    def _blockers(self, ids: Set[str], doomed: Optional[Set[str]] = None) -> Dict[str, str]:
        """Map ids in ``ids`` to a surviving task that names them as predecessor."""
        leaving = doomed if doomed is not None else ids
        blockers: Dict[str, str] = {}
        for task in self._tasks:
            target = task.previous_instance_id
            if target in ids and task.id not in leaving:
                blockers.setdefault(target, task.id)
        return blockers


__all__ = [
    "BulkDeleteResult",
    "CompletionResult",
    "DeleteResult",
    "EVENTS",
    "TaskStore",
]
