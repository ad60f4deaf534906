"""Parse, normalize and reconcile externally sourced tasks against the store."""
from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from core.errors import ConfirmationRequired, ImportFormatError
from core.priorities import normalize_category, normalize_frequency, normalize_priority
from core.settings import ENGINE, EnginePolicy
from models.settings import AppSettings
from models.task import Task
from services.task_store import TaskStore
from utils.datetime_utils import parse_local_datetime, parse_timestamp, utc_now


logger = logging.getLogger("taskmaster.import")

MATCH_FIELDS = ("title", "category", "priority", "due_date")
DEFAULT_MATCH_FIELDS: FrozenSet[str] = frozenset({"title", "category"})

STATUS_NEW = "new"
STATUS_DUPLICATE = "duplicate"
STATUS_UPDATED = "updated"

STRATEGY_MERGE = "merge"
STRATEGY_UPDATE = "update"
STRATEGY_OVERWRITE = "overwrite"

# Canonical field -> accepted source keys, first non-empty wins.
FIELD_SYNONYMS: Dict[str, Sequence[str]] = {
    "id": ("id", "ID"),
    "title": ("title", "Title", "task", "Task"),
    "description": ("description", "Description", "notes", "Notes"),
    "category": ("category", "Category"),
    "priority": ("priority", "Priority"),
    "due_date": ("dueDate", "due_date", "DueDate", "Due", "Due Date"),
    "reminder": ("reminder", "Reminder"),
    "repeat": ("repeat", "Repeat"),
    "repeat_frequency": ("repeatFrequency", "repeat_frequency", "Frequency", "Repeat Frequency"),
    "tags": ("tags", "Tags", "tag", "Tag"),
    "completed": ("completed", "Completed"),
    "parent_id": ("parentId", "parent_id", "Parent ID"),
    "created_at": ("createdAt", "created_at", "Created", "Created At"),
    "order": ("order", "Order"),
}

_TRUE_WORDS = {"yes", "true", "1", "y", "on"}


@dataclass
class ImportCandidate:
    """An incoming task in canonical shape, not yet part of the store."""

    title: str
    description: str = ""
    category: str = "personal"
    priority: str = "medium"
    due_date: Optional[datetime] = None
    reminder: Optional[datetime] = None
    repeat: bool = False
    repeat_frequency: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    completed: bool = False
    parent_id: Optional[str] = None
    source_id: Optional[str] = None
    created_at: Optional[datetime] = None
    order: Optional[float] = None

    def build_task(self, task_id: str, now: datetime, order: float) -> Task:
        return Task(
            id=task_id,
            title=self.title,
            description=self.description,
            category=self.category,
            priority=self.priority,
            due_date=self.due_date,
            reminder=self.reminder,
            repeat=self.repeat,
            repeat_frequency=self.repeat_frequency,
            tags=list(self.tags),
            completed=self.completed,
            completed_at=now if self.completed else None,
            created_at=now,
            order=order,
            parent_id=self.parent_id,
        )


@dataclass
class CandidateAnalysis:
    candidate: ImportCandidate
    status: str
    match: Optional[Task] = None
    changes: List[str] = field(default_factory=list)


@dataclass
class ImportAnalysis:
    items: List[CandidateAnalysis]
    source_type: str = ""
    dropped: int = 0

    @property
    def total(self) -> int:
        return len(self.items)

    def _count(self, *statuses: str) -> int:
        return sum(1 for item in self.items if item.status in statuses)

    @property
    def new_count(self) -> int:
        return self._count(STATUS_NEW)

    @property
    def duplicate_count(self) -> int:
        """Matched candidates, with or without changes."""
        return self._count(STATUS_DUPLICATE, STATUS_UPDATED)

    @property
    def updated_count(self) -> int:
        return self._count(STATUS_UPDATED)

    def duplicates_only(self) -> List[CandidateAnalysis]:
        return [i for i in self.items if i.status in (STATUS_DUPLICATE, STATUS_UPDATED)]

    def new_only(self) -> List[CandidateAnalysis]:
        return [i for i in self.items if i.status == STATUS_NEW]


@dataclass(frozen=True)
class ImportResult:
    strategy: str
    added_ids: List[str]
    updated_ids: List[str]
    replaced: int = 0


# ---------- parsing ----------
def parse_json_import(text: str) -> List[Any]:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ImportFormatError(f"Invalid JSON: {exc.msg}") from exc
    if isinstance(parsed, list):
        data = parsed
    elif isinstance(parsed, dict) and isinstance(parsed.get("tasks"), list):
        data = parsed["tasks"]
    else:
        raise ImportFormatError(
            'Invalid JSON format. Expected an array of tasks or an object with a "tasks" array.'
        )
    if not data:
        raise ImportFormatError("No tasks found")
    return data


def parse_tabular_import(rows: Iterable[Sequence[Any]]) -> List[Dict[str, Any]]:
    """Reassemble header + value rows into records keyed by header."""
    materialised = [list(row) for row in rows]
    if len(materialised) < 2:
        raise ImportFormatError("No tasks found")
    headers = [str(h).strip() if h is not None else "" for h in materialised[0]]
    records: List[Dict[str, Any]] = []
    for values in materialised[1:]:
        if not any(v not in (None, "") for v in values):
            continue
        record: Dict[str, Any] = {}
        for index, header in enumerate(headers):
            if not header:
                continue
            value = values[index] if index < len(values) else ""
            record[header] = "" if value is None else value
        records.append(record)
    if not records:
        raise ImportFormatError("No tasks found")
    return records


def parse_csv_import(text: str) -> List[Dict[str, Any]]:
    try:
        rows = list(csv.reader(io.StringIO(text)))
    except csv.Error as exc:
        raise ImportFormatError(f"Invalid CSV: {exc}") from exc
    return parse_tabular_import(rows)


def parse_excel_import(path: Path) -> List[Dict[str, Any]]:
    """Header row + value rows from the first worksheet of an ``.xlsx`` file."""
    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as exc:
        raise ImportFormatError(f"Cannot read {path.name}: {exc}") from exc
    try:
        if not workbook.worksheets:
            raise ImportFormatError("No tasks found")
        rows = list(workbook.worksheets[0].iter_rows(values_only=True))
    finally:
        workbook.close()
    return parse_tabular_import(rows)


def load_import_file(path: Path) -> tuple[List[Any], str]:
    """Read ``path`` and return ``(records, source_type)``."""
    suffix = path.suffix.lower()
    if suffix == ".xlsx":
        return parse_excel_import(path), "excel"
    if suffix not in (".json", ".csv"):
        raise ImportFormatError("Unsupported file format. Please use JSON, CSV or Excel files.")
    try:
        text = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise ImportFormatError(f"Cannot read {path.name}: {exc}") from exc
    if suffix == ".json":
        return parse_json_import(text), "json"
    return parse_csv_import(text), "csv"


# ---------- normalization ----------
def _pick(item: Mapping[str, Any], canonical: str) -> Any:
    for key in FIELD_SYNONYMS[canonical]:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in _TRUE_WORDS


def _as_tags(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        parts = [str(v) for v in value]
    else:
        parts = str(value).split(",")
    return [p.strip() for p in parts if p and p.strip()]


def _as_order(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_record(item: Any, defaults: Optional[AppSettings] = None) -> Optional[ImportCandidate]:
    """Map a loosely shaped record onto :class:`ImportCandidate`.

    Returns ``None`` for entries that cannot become a task. Inconsistent
    optional fields are repaired rather than rejected.
    """
    if not isinstance(item, Mapping):
        return None
    settings = defaults or AppSettings()
    title = str(_pick(item, "title") or "").strip()
    if not title:
        return None

    due_date = parse_local_datetime(_pick(item, "due_date"))
    reminder = parse_local_datetime(_pick(item, "reminder"))
    if due_date is not None and reminder is not None and reminder > due_date:
        reminder = None
    frequency = normalize_frequency(_pick(item, "repeat_frequency"))
    repeat = _as_bool(_pick(item, "repeat")) and frequency is not None
    source_id = _pick(item, "id")

    return ImportCandidate(
        title=title,
        description=str(_pick(item, "description") or "").strip(),
        category=normalize_category(_pick(item, "category"), settings.default_category),
        priority=normalize_priority(_pick(item, "priority"), settings.default_priority),
        due_date=due_date,
        reminder=reminder,
        repeat=repeat,
        repeat_frequency=frequency if repeat else None,
        tags=_as_tags(_pick(item, "tags")),
        completed=_as_bool(_pick(item, "completed")),
        parent_id=str(_pick(item, "parent_id")) if _pick(item, "parent_id") is not None else None,
        source_id=str(source_id) if source_id is not None else None,
        created_at=parse_timestamp(_pick(item, "created_at")),
        order=_as_order(_pick(item, "order")),
    )


# ---------- reconciliation ----------
def match_ratio(candidate: ImportCandidate, existing: Task, fields: Iterable[str]) -> Optional[float]:
    """Share of selected fields that agree, or ``None`` when nothing was compared.

    A due date missing on both sides is not evidence either way and is not
    counted.
    """
    considered = 0
    matched = 0
    for name in MATCH_FIELDS:
        if name not in fields:
            continue
        if name == "due_date" and candidate.due_date is None and existing.due_date is None:
            continue
        considered += 1
        if name == "title":
            if candidate.title.strip().lower() == existing.title.strip().lower():
                matched += 1
        elif getattr(candidate, name) == getattr(existing, name):
            matched += 1
    if considered == 0:
        return None
    return matched / considered


def detect_duplicate(
    candidate: ImportCandidate,
    existing_tasks: Iterable[Task],
    match_fields: Iterable[str] = DEFAULT_MATCH_FIELDS,
    threshold: float = ENGINE.duplicate_threshold,
) -> Optional[Task]:
    """Return the first task in collection order whose match ratio reaches ``threshold``."""
    fields = frozenset(match_fields)
    if not fields & set(MATCH_FIELDS):
        return None
    for task in existing_tasks:
        ratio = match_ratio(candidate, task, fields)
        if ratio is not None and ratio >= threshold:
            return task
    return None


def tracked_changes(candidate: ImportCandidate, match: Task) -> List[str]:
    changes: List[str] = []
    if candidate.description != (match.description or ""):
        changes.append("description")
    if candidate.priority != match.priority:
        changes.append("priority")
    if candidate.due_date != match.due_date:
        changes.append("dueDate")
    return changes


class ImportReconciler:
    """Classifies import batches and applies one of three merge strategies."""

    def __init__(
        self,
        store: TaskStore,
        *,
        policy: EnginePolicy = ENGINE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.policy = policy
        self._clock = clock

    def normalize(self, records: Iterable[Any]) -> tuple[List[ImportCandidate], int]:
        candidates: List[ImportCandidate] = []
        dropped = 0
        for item in records:
            candidate = normalize_record(item, self.store.defaults)
            if candidate is None:
                dropped += 1
                continue
            candidates.append(candidate)
        if dropped:
            logger.warning("Dropped %d unusable import record(s)", dropped)
        return candidates, dropped

    def analyze(
        self,
        records: Iterable[Any],
        *,
        match_fields: Iterable[str] = DEFAULT_MATCH_FIELDS,
        source_type: str = "",
    ) -> ImportAnalysis:
        candidates, dropped = self.normalize(records)
        if not candidates:
            raise ImportFormatError("Invalid file format or no tasks found")
        existing = self.store.all()
        fields = frozenset(match_fields)
        items: List[CandidateAnalysis] = []
        for candidate in candidates:
            match = detect_duplicate(candidate, existing, fields, self.policy.duplicate_threshold)
            if match is None:
                items.append(CandidateAnalysis(candidate=candidate, status=STATUS_NEW))
                continue
            changes = tracked_changes(candidate, match)
            status = STATUS_UPDATED if changes else STATUS_DUPLICATE
            items.append(CandidateAnalysis(candidate=candidate, status=status, match=match, changes=changes))
        analysis = ImportAnalysis(items=items, source_type=source_type, dropped=dropped)
        logger.info(
            "Import analysed: %d total, %d new, %d duplicate, %d updated",
            analysis.total,
            analysis.new_count,
            analysis.duplicate_count,
            analysis.updated_count,
        )
        return analysis

    def _fresh_tasks(self, candidates: Iterable[ImportCandidate]) -> List[Task]:
        """Build new tasks with fresh ids, re-pointing in-batch parent links."""
        now = self._clock()
        batch = list(candidates)
        ids = [self.store.new_id() for _ in batch]
        by_source = {c.source_id: new_id for c, new_id in zip(batch, ids) if c.source_id}
        next_order = self.store.next_order()
        tasks: List[Task] = []
        for offset, (candidate, new_id) in enumerate(zip(batch, ids)):
            order = candidate.order if candidate.order is not None else next_order + offset
            task = candidate.build_task(new_id, now, order)
            if task.parent_id in by_source:
                task.parent_id = by_source[task.parent_id]
            tasks.append(task)
        return tasks

    def apply_merge(self, analysis: ImportAnalysis) -> ImportResult:
        fresh = self._fresh_tasks(i.candidate for i in analysis.new_only())
        added = self.store.insert_many(fresh)
        return ImportResult(strategy=STRATEGY_MERGE, added_ids=[t.id for t in added], updated_ids=[])

    def apply_update(self, analysis: ImportAnalysis) -> ImportResult:
        fresh = self._fresh_tasks(i.candidate for i in analysis.new_only())
        updated: List[str] = []
        for item in analysis.items:
            if item.status != STATUS_UPDATED or item.match is None:
                continue
            patch: Dict[str, Any] = {}
            if "description" in item.changes:
                patch["description"] = item.candidate.description
            if "priority" in item.changes:
                patch["priority"] = item.candidate.priority
            if "dueDate" in item.changes:
                patch["due_date"] = item.candidate.due_date
            target = self.store.find_by_id(item.match.id)
            if target is None:
                continue
            if "due_date" in patch and target.reminder is not None:
                due = patch["due_date"]
                if due is not None and target.reminder > due:
                    patch["reminder"] = None
            if self.store.update(target.id, **patch) is not None:
                updated.append(target.id)
        added = self.store.insert_many(fresh)
        return ImportResult(
            strategy=STRATEGY_UPDATE, added_ids=[t.id for t in added], updated_ids=updated
        )

    def apply_overwrite(self, analysis: ImportAnalysis, *, confirm: bool = False) -> ImportResult:
        if not confirm:
            raise ConfirmationRequired(
                "Overwrite deletes all existing tasks; pass confirm=True to proceed"
            )
        replaced = len(self.store)
        fresh = self._fresh_tasks(i.candidate for i in analysis.items)
        self.store.replace_all([])
        added = self.store.insert_many(fresh)
        return ImportResult(
            strategy=STRATEGY_OVERWRITE,
            added_ids=[t.id for t in added],
            updated_ids=[],
            replaced=replaced,
        )

    def apply(self, analysis: ImportAnalysis, strategy: str, *, confirm: bool = False) -> ImportResult:
        if strategy == STRATEGY_MERGE:
            return self.apply_merge(analysis)
        if strategy == STRATEGY_UPDATE:
            return self.apply_update(analysis)
        if strategy == STRATEGY_OVERWRITE:
            return self.apply_overwrite(analysis, confirm=confirm)
        raise ValueError(f"Unsupported import strategy: {strategy}")


__all__ = [
    "DEFAULT_MATCH_FIELDS",
    "FIELD_SYNONYMS",
    "MATCH_FIELDS",
    "STATUS_DUPLICATE",
    "STATUS_NEW",
    "STATUS_UPDATED",
    "STRATEGY_MERGE",
    "STRATEGY_OVERWRITE",
    "STRATEGY_UPDATE",
    "CandidateAnalysis",
    "ImportAnalysis",
    "ImportCandidate",
    "ImportReconciler",
    "ImportResult",
    "detect_duplicate",
    "load_import_file",
    "match_ratio",
    "normalize_record",
    "parse_csv_import",
    "parse_excel_import",
    "parse_json_import",
    "parse_tabular_import",
    "tracked_changes",
]
