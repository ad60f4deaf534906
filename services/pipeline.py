"""Filter, search, sort, tree-flatten and paginate the task collection.

Everything here is a pure function of its inputs; ``now`` is always passed in
so identical inputs give identical pages.
"""
from __future__ import annotations

import locale
import math
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set

from core.errors import ValidationError
from core.priorities import PRIORITY_META, priority_rank
from core.settings import ENGINE, EnginePolicy
from models.task import Task
from utils.datetime_utils import start_of_day


TAB_ALL = "all"
TAB_COMPLETED = "completed"
TAB_RECURRING = "recurring"

QUICK_FILTERS = ("overdue", "today", "week")
SORT_KEYS = ("order", "priority", "dueDate", "title")


@dataclass(frozen=True)
class TaskQuery:
    search: str = ""
    tab: str = TAB_ALL
    quick_filter: Optional[str] = None
    priority_filter: Optional[str] = None
    sort: str = "order"
    page: int = 1
    page_size: int = ENGINE.default_page_size


@dataclass(frozen=True)
class TaskRow:
    task: Task
    depth: int


@dataclass(frozen=True)
class TaskPage:
    rows: List[TaskRow]
    total: int
    total_pages: int
    page: int
    page_size: int

    @property
    def tasks(self) -> List[Task]:
        return [row.task for row in self.rows]

    @property
    def first_item(self) -> int:
        return 0 if self.total == 0 else (self.page - 1) * self.page_size + 1

    @property
    def last_item(self) -> int:
        return min(self.page * self.page_size, self.total)


@dataclass
class FilterCounts:
    overdue: int = 0
    today: int = 0
    week: int = 0
    priorities: Dict[str, int] = field(default_factory=lambda: {p: 0 for p in PRIORITY_META})


# ---------- search ----------
def matches_search(task: Task, needle: str) -> bool:
    """Case-insensitive substring match on title, description and tags."""
    needle = needle.lower()
    if needle in task.title.lower():
        return True
    if task.description and needle in task.description.lower():
        return True
    return any(needle in tag.lower() for tag in task.tags)


def apply_search(tasks: Sequence[Task], text: str) -> List[Task]:
    needle = (text or "").strip()
    if not needle:
        return list(tasks)
    by_id = {t.id: t for t in tasks}
    keep: Set[str] = set()
    for task in tasks:
        if not matches_search(task, needle):
            continue
        keep.add(task.id)
        current = task
        seen = {task.id}
        while current.parent_id and current.parent_id not in seen:
            seen.add(current.parent_id)
            parent = by_id.get(current.parent_id)
            if parent is None:
                break
            keep.add(parent.id)
            current = parent
    return [t for t in tasks if t.id in keep]


# ---------- quick filters ----------
def _day_bounds(now: datetime):
    today = start_of_day(now)
    return today, today + timedelta(days=1), today + timedelta(days=7)


def matches_quick_filter(task: Task, quick_filter: Optional[str], now: datetime) -> bool:
    if not quick_filter:
        return True
    if task.completed or task.due_date is None:
        return False
    today, tomorrow, week_end = _day_bounds(now)
    due = task.due_date
    if quick_filter == "overdue":
        return due < today
    if quick_filter == "today":
        return today <= due < tomorrow
    if quick_filter == "week":
        return today <= due < week_end
    return True


def matches_priority_filter(task: Task, priority_filter: Optional[str]) -> bool:
    if not priority_filter:
        return True
    return not task.completed and task.priority == priority_filter


# ---------- tabs ----------
def within_horizon(task: Task, now: datetime, horizon_days: int) -> bool:
    """True for tasks without a due date or due no later than ``now + horizon``."""
    if task.due_date is None:
        return True
    return task.due_date <= now + timedelta(days=horizon_days)


def apply_tab(
    tasks: Iterable[Task],
    tab: str,
    now: datetime,
    *,
    searching: bool = False,
    horizon_days: int = ENGINE.recurring_horizon_days,
) -> List[Task]:
    if searching:
        if tab == TAB_COMPLETED:
            return list(tasks)
        return [t for t in tasks if not t.completed]
    if tab == TAB_COMPLETED:
        return [t for t in tasks if t.completed]
    if tab == TAB_RECURRING:
        return [t for t in tasks if not t.completed and t.repeat]

    result: List[Task] = []
    for task in tasks:
        if task.completed:
            continue
        if tab != TAB_ALL and task.category != tab:
            continue
        if task.repeat and not within_horizon(task, now, horizon_days):
            continue
        result.append(task)
    return result


# ---------- sorting ----------
def _title_key(title: str) -> str:
    folded = unicodedata.normalize("NFKD", title).casefold()
    try:
        return locale.strxfrm(folded)
    except (ValueError, OSError):
        return folded


def sort_tasks(tasks: Iterable[Task], sort_key: str = "order") -> List[Task]:
    """Stable sort; completed tasks always follow pending ones."""
    if sort_key == "priority":
        def key(t: Task):
            return (t.completed, priority_rank(t.priority))
    elif sort_key == "dueDate":
        def key(t: Task):
            missing = t.due_date is None
            return (t.completed, missing, t.due_date or datetime.min)
    elif sort_key == "title":
        def key(t: Task):
            return (t.completed, _title_key(t.title))
    else:
        def key(t: Task):
            return (t.completed, t.order or 0.0)
    return sorted(tasks, key=key)


# ---------- tree ----------
def build_rows(tasks: Sequence[Task]) -> List[TaskRow]:
    """Nest tasks under parents present in ``tasks`` and flatten depth first.

    Tasks whose parent is absent become top-level. Nodes only reachable
    through a parent cycle are emitted at depth 0 once, never looped.
    """
    present = {t.id for t in tasks}
    children: Dict[str, List[Task]] = {}
    roots: List[Task] = []
    for task in tasks:
        if task.parent_id and task.parent_id in present and task.parent_id != task.id:
            children.setdefault(task.parent_id, []).append(task)
        else:
            roots.append(task)

    rows: List[TaskRow] = []
    emitted: Set[str] = set()

    def walk(nodes: List[Task], depth: int) -> None:
        for node in nodes:
            if node.id in emitted:
                continue
            emitted.add(node.id)
            rows.append(TaskRow(task=node, depth=depth))
            walk(children.get(node.id, []), depth + 1)

    walk(roots, 0)
    # Members of a parent cycle have no root; surface them rather than drop them.
    for task in tasks:
        if task.id not in emitted:
            walk([task], 0)
    return rows


# ---------- pagination ----------
def paginate(rows: Sequence[TaskRow], page: int, page_size: int) -> TaskPage:
    if page_size < 1:
        raise ValidationError("page_size must be at least 1")
    page = max(1, page)
    total = len(rows)
    total_pages = math.ceil(total / page_size) if total else 0
    start = (page - 1) * page_size
    return TaskPage(
        rows=list(rows[start:start + page_size]),
        total=total,
        total_pages=total_pages,
        page=page,
        page_size=page_size,
    )


def run_pipeline(
    tasks: Sequence[Task],
    query: TaskQuery,
    now: datetime,
    *,
    policy: EnginePolicy = ENGINE,
) -> TaskPage:
    searching = bool((query.search or "").strip())
    selected = apply_search(tasks, query.search)
    if query.quick_filter or query.priority_filter:
        selected = [
            t
            for t in selected
            if matches_quick_filter(t, query.quick_filter, now)
            and matches_priority_filter(t, query.priority_filter)
        ]
    selected = apply_tab(
        selected,
        query.tab,
        now,
        searching=searching,
        horizon_days=policy.recurring_horizon_days,
    )
    ordered = sort_tasks(selected, query.sort)
    return paginate(build_rows(ordered), query.page, query.page_size)


# ---------- helpers for callers ----------
def filter_counts(tasks: Iterable[Task], now: datetime) -> FilterCounts:
    counts = FilterCounts()
    for task in tasks:
        if task.completed:
            continue
        for bucket in QUICK_FILTERS:
            if matches_quick_filter(task, bucket, now):
                setattr(counts, bucket, getattr(counts, bucket) + 1)
        if task.priority in counts.priorities:
            counts.priorities[task.priority] += 1
    return counts


def due_status(task: Task, now: datetime) -> Optional[str]:
    if task.due_date is None:
        return None
    today, tomorrow, _ = _day_bounds(now)
    if task.due_date < today:
        return "overdue"
    if task.due_date < tomorrow:
        return "today"
    return "upcoming"


__all__ = [
    "FilterCounts",
    "QUICK_FILTERS",
    "SORT_KEYS",
    "TAB_ALL",
    "TAB_COMPLETED",
    "TAB_RECURRING",
    "TaskPage",
    "TaskQuery",
    "TaskRow",
    "apply_search",
    "apply_tab",
    "build_rows",
    "due_status",
    "filter_counts",
    "matches_quick_filter",
    "matches_search",
    "paginate",
    "run_pipeline",
    "sort_tasks",
    "within_horizon",
]
