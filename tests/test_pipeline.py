from datetime import datetime, timedelta

import pytest

from core.errors import ValidationError
from core.settings import EnginePolicy
from models import Task
from services.pipeline import (
    TaskQuery,
    apply_search,
    build_rows,
    due_status,
    filter_counts,
    paginate,
    run_pipeline,
    sort_tasks,
)


NOW = datetime(2024, 6, 1, 12, 0)


def make(task_id, title=None, **fields):
    fields.setdefault("order", float(int(task_id)))
    return Task(id=task_id, title=title or f"Task {task_id}", **fields)


def ids(page_or_tasks):
    tasks = getattr(page_or_tasks, "tasks", page_or_tasks)
    return [t.id for t in tasks]


def test_all_tab_applies_recurring_horizon():
    tasks = [
        make("1", completed=True),
        make("2", repeat=True, repeat_frequency="weekly", due_date=NOW + timedelta(days=20)),
        make("3", repeat=True, repeat_frequency="weekly", due_date=NOW + timedelta(days=10)),
        make("4"),
    ]
    page = run_pipeline(tasks, TaskQuery(tab="all"), NOW)
    assert ids(page) == ["3", "4"]


def test_horizon_is_configurable():
    tasks = [make("1", repeat=True, repeat_frequency="daily", due_date=NOW + timedelta(days=20))]
    policy = EnginePolicy(recurring_horizon_days=30)
    assert ids(run_pipeline(tasks, TaskQuery(), NOW, policy=policy)) == ["1"]


def test_repeating_without_due_date_and_overdue_repeating_are_visible():
    tasks = [
        make("1", repeat=True, repeat_frequency="daily"),
        make("2", repeat=True, repeat_frequency="daily", due_date=NOW - timedelta(days=40)),
    ]
    assert ids(run_pipeline(tasks, TaskQuery(), NOW)) == ["1", "2"]


def test_completed_recurring_and_category_tabs():
    tasks = [
        make("1", category="office", completed=True),
        make("2", category="office", repeat=True, repeat_frequency="daily",
             due_date=NOW + timedelta(days=30)),
        make("3", category="office"),
        make("4", category="personal"),
    ]
    assert ids(run_pipeline(tasks, TaskQuery(tab="completed"), NOW)) == ["1"]
    assert ids(run_pipeline(tasks, TaskQuery(tab="recurring"), NOW)) == ["2"]
    assert ids(run_pipeline(tasks, TaskQuery(tab="office"), NOW)) == ["3"]


def test_search_keeps_ancestor_chain():
    tasks = [
        make("1", "Groceries"),
        make("2", "Buy milk", parent_id="1"),
        make("3", "Buy bread", parent_id="1"),
        make("4", "Call mom"),
    ]
    page = run_pipeline(tasks, TaskQuery(search="MILK"), NOW)
    assert [(r.task.id, r.depth) for r in page.rows] == [("1", 0), ("2", 1)]


def test_search_matches_description_and_tags():
    tasks = [
        make("1", "A", description="remember the Invoice"),
        make("2", "B", tags=["finance"]),
        make("3", "C"),
    ]
    assert ids(apply_search(tasks, "invoice")) == ["1"]
    assert ids(apply_search(tasks, "fin")) == ["2"]
    assert ids(apply_search(tasks, "   ")) == ["1", "2", "3"]


def test_search_bypasses_category_rules_but_hides_completed():
    tasks = [
        make("1", "Report draft", category="personal"),
        make("2", "Report final", category="office", completed=True),
        make("3", "Report weekly", category="misc", repeat=True, repeat_frequency="weekly",
             due_date=NOW + timedelta(days=60)),
    ]
    assert ids(run_pipeline(tasks, TaskQuery(search="report", tab="office"), NOW)) == ["1", "3"]
    assert ids(run_pipeline(tasks, TaskQuery(search="report", tab="completed"), NOW)) == ["1", "3", "2"]


def test_quick_filters_use_local_midnight_buckets():
    tasks = [
        make("1", due_date=datetime(2024, 5, 31, 23, 59)),
        make("2", due_date=datetime(2024, 6, 1, 0, 0)),
        make("3", due_date=datetime(2024, 6, 1, 23, 59)),
        make("4", due_date=datetime(2024, 6, 7, 23, 59)),
        make("5", due_date=datetime(2024, 6, 8, 0, 0)),
        make("6"),
    ]
    assert ids(run_pipeline(tasks, TaskQuery(quick_filter="overdue"), NOW)) == ["1"]
    assert ids(run_pipeline(tasks, TaskQuery(quick_filter="today"), NOW)) == ["2", "3"]
    assert ids(run_pipeline(tasks, TaskQuery(quick_filter="week"), NOW)) == ["2", "3", "4"]


def test_quick_and_priority_filters_combine():
    tasks = [
        make("1", priority="urgent", due_date=datetime(2024, 6, 1, 15, 0)),
        make("2", priority="low", due_date=datetime(2024, 6, 1, 15, 0)),
        make("3", priority="urgent"),
        make("4", priority="urgent", due_date=datetime(2024, 6, 1, 15, 0), completed=True),
    ]
    query = TaskQuery(quick_filter="today", priority_filter="urgent")
    assert ids(run_pipeline(tasks, query, NOW)) == ["1"]
    only_priority = TaskQuery(tab="completed", priority_filter="urgent")
    assert ids(run_pipeline(tasks, only_priority, NOW)) == []


def test_completed_always_sorts_last():
    tasks = [
        make("1", priority="urgent", completed=True),
        make("2", priority="low"),
        make("3", priority="high"),
        make("4", priority="low"),
    ]
    assert ids(sort_tasks(tasks, "priority")) == ["3", "2", "4", "1"]


def test_due_date_sort_puts_missing_dates_last():
    tasks = [
        make("1"),
        make("2", due_date=datetime(2024, 6, 5)),
        make("3", due_date=datetime(2024, 6, 2)),
    ]
    assert ids(sort_tasks(tasks, "dueDate")) == ["3", "2", "1"]


def test_title_and_order_sort():
    tasks = [
        make("1", "banana", order=3.0),
        make("2", "Apple", order=1.5),
        make("3", "cherry", order=0.5),
    ]
    assert ids(sort_tasks(tasks, "title")) == ["2", "1", "3"]
    assert ids(sort_tasks(tasks, "order")) == ["3", "2", "1"]


def test_tree_promotes_orphans_and_keeps_level_order():
    tasks = [
        make("1", "Parent", order=2.0),
        make("2", "Second child", parent_id="1", order=5.0),
        make("3", "First child", parent_id="1", order=4.0),
        make("4", "Orphan", parent_id="404", order=1.0),
    ]
    page = run_pipeline(tasks, TaskQuery(), NOW)
    assert [(r.task.id, r.depth) for r in page.rows] == [("4", 0), ("1", 0), ("3", 1), ("2", 1)]


def test_tree_build_terminates_on_cycles():
    tasks = [
        make("1", parent_id="2"),
        make("2", parent_id="1"),
        make("3", parent_id="3"),
    ]
    rows = build_rows(tasks)
    assert sorted(r.task.id for r in rows) == ["1", "2", "3"]
    assert len(rows) == 3


def test_pagination_slices_flattened_rows():
    tasks = [make(str(i)) for i in range(1, 13)]

    first = run_pipeline(tasks, TaskQuery(page=1, page_size=10), NOW)
    assert ids(first) == [str(i) for i in range(1, 11)]
    assert first.total == 12
    assert first.total_pages == 2
    assert (first.first_item, first.last_item) == (1, 10)

    second = run_pipeline(tasks, TaskQuery(page=2, page_size=10), NOW)
    assert ids(second) == ["11", "12"]
    assert (second.first_item, second.last_item) == (11, 12)


def test_pagination_edges():
    assert paginate([], 1, 10).total_pages == 0
    assert paginate([], 0, 10).page == 1
    with pytest.raises(ValidationError):
        paginate([], 1, 0)


def test_pipeline_is_deterministic():
    tasks = [make(str(i), priority=("low", "high")[i % 2]) for i in range(1, 8)]
    query = TaskQuery(sort="priority", page_size=3, page=2)
    assert run_pipeline(tasks, query, NOW) == run_pipeline(tasks, query, NOW)


def test_filter_counts_and_due_status():
    tasks = [
        make("1", priority="urgent", due_date=datetime(2024, 5, 30, 9, 0)),
        make("2", priority="high", due_date=datetime(2024, 6, 1, 18, 0)),
        make("3", priority="high", due_date=datetime(2024, 6, 3, 18, 0)),
        make("4", priority="low", completed=True, due_date=datetime(2024, 6, 1, 18, 0)),
    ]
    counts = filter_counts(tasks, NOW)
    assert (counts.overdue, counts.today, counts.week) == (1, 1, 2)
    assert counts.priorities == {"urgent": 1, "high": 2, "medium": 0, "low": 0}

    assert due_status(tasks[0], NOW) == "overdue"
    assert due_status(tasks[1], NOW) == "today"
    assert due_status(tasks[2], NOW) == "upcoming"
    assert due_status(make("9"), NOW) is None
