import json
from datetime import datetime

import pytest
from openpyxl import Workbook

from core.errors import ConfirmationRequired, ImportFormatError
from core.settings import EnginePolicy
from models import AppSettings, Task, TaskDraft
from services.importer import (
    STATUS_DUPLICATE,
    STATUS_NEW,
    STATUS_UPDATED,
    ImportReconciler,
    detect_duplicate,
    load_import_file,
    match_ratio,
    normalize_record,
    parse_csv_import,
    parse_json_import,
    parse_tabular_import,
)
from services.task_store import TaskStore


@pytest.fixture()
def store():
    return TaskStore()


@pytest.fixture()
def reconciler(store):
    return ImportReconciler(store)


def _existing(store, title, **fields):
    return store.create(TaskDraft(title=title, **fields))


# ----- duplicate detection -----
def test_title_and_category_match_ignores_case_and_other_fields():
    candidate = normalize_record({"title": "Pay rent", "category": "personal"})
    existing = Task(id="1", title="pay rent ", category="personal", priority="low")

    assert match_ratio(candidate, existing, {"title", "category"}) == 1.0
    assert detect_duplicate(candidate, [existing], {"title", "category"}) is existing


def test_due_date_only_with_both_missing_is_no_match():
    candidate = normalize_record({"title": "Pay rent"})
    existing = Task(id="1", title="Something else")

    assert match_ratio(candidate, existing, {"due_date"}) is None
    assert detect_duplicate(candidate, [existing], {"due_date"}) is None


def test_no_selected_fields_finds_nothing():
    candidate = normalize_record({"title": "Pay rent"})
    existing = Task(id="1", title="Pay rent")
    assert detect_duplicate(candidate, [existing], set()) is None


def test_half_match_reaches_threshold_and_first_match_wins():
    candidate = normalize_record({"title": "Pay rent", "priority": "high"})
    first = Task(id="1", title="Pay rent", priority="low")
    second = Task(id="2", title="Pay rent", priority="high")

    assert match_ratio(candidate, first, {"title", "priority"}) == 0.5
    assert detect_duplicate(candidate, [first, second], {"title", "priority"}) is first
    strict = EnginePolicy(duplicate_threshold=0.75).duplicate_threshold
    assert detect_duplicate(candidate, [first, second], {"title", "priority"}, strict) is second


# ----- normalization -----
def test_normalize_accepts_synonyms():
    candidate = normalize_record(
        {
            "Task": "  Renew passport ",
            "Notes": "bring photos",
            "Category": "Office",
            "Priority": "HIGH",
            "Due Date": "2024-05-01T10:00",
            "Reminder": "2024-05-01T09:00",
            "Repeat": "Yes",
            "Frequency": "Monthly",
            "Tags": "docs, travel ,",
            "Completed": "No",
            "Parent ID": 42,
            "ID": 7,
            "Order": "3.5",
        }
    )
    assert candidate.title == "Renew passport"
    assert candidate.description == "bring photos"
    assert candidate.category == "office"
    assert candidate.priority == "high"
    assert candidate.due_date == datetime(2024, 5, 1, 10, 0)
    assert candidate.reminder == datetime(2024, 5, 1, 9, 0)
    assert candidate.repeat is True
    assert candidate.repeat_frequency == "monthly"
    assert candidate.tags == ["docs", "travel"]
    assert candidate.completed is False
    assert candidate.parent_id == "42"
    assert candidate.source_id == "7"
    assert candidate.order == 3.5


def test_normalize_uses_settings_defaults_and_repairs_fields():
    defaults = AppSettings(default_category="misc", default_priority="low")
    candidate = normalize_record(
        {
            "title": "Odd",
            "priority": "whenever",
            "dueDate": "2024-05-01T10:00",
            "reminder": "2024-05-02T10:00",
            "repeat": True,
        },
        defaults,
    )
    assert candidate.category == "misc"
    assert candidate.priority == "low"
    assert candidate.reminder is None
    assert candidate.repeat is False
    assert candidate.repeat_frequency is None


@pytest.mark.parametrize("item", ["text", 3, None, {"title": "   "}, {"description": "no title"}])
def test_unusable_entries_are_dropped(item):
    assert normalize_record(item) is None


# ----- parsing -----
def test_parse_json_bare_list_and_wrapper():
    assert parse_json_import('[{"title": "A"}]') == [{"title": "A"}]
    assert parse_json_import('{"tasks": [{"title": "B"}], "version": "1.2"}') == [{"title": "B"}]


@pytest.mark.parametrize("text", ["{not json", '{"items": []}', "[]", '"tasks"'])
def test_parse_json_rejects_bad_input(text):
    with pytest.raises(ImportFormatError):
        parse_json_import(text)


def test_parse_tabular_fills_missing_cells():
    rows = [["Title", "Priority", "Tags"], ["A", "high"], [None, None, None], ["B", None, "x,y"]]
    assert parse_tabular_import(rows) == [
        {"Title": "A", "Priority": "high", "Tags": ""},
        {"Title": "B", "Priority": "", "Tags": "x,y"},
    ]


def test_parse_csv_and_header_only_input():
    text = "Title,Due Date,Repeat\nLaundry,2024-05-04,No\n"
    assert parse_csv_import(text) == [{"Title": "Laundry", "Due Date": "2024-05-04", "Repeat": "No"}]
    with pytest.raises(ImportFormatError):
        parse_csv_import("Title,Priority\n")


def test_load_import_file_dispatches_on_suffix(tmp_path):
    json_path = tmp_path / "tasks.json"
    json_path.write_text(json.dumps({"tasks": [{"title": "A"}]}), encoding="utf-8")
    csv_path = tmp_path / "tasks.CSV"
    csv_path.write_text("title\nB\n", encoding="utf-8")
    other = tmp_path / "tasks.xml"
    other.write_text("<tasks/>", encoding="utf-8")

    assert load_import_file(json_path) == ([{"title": "A"}], "json")
    assert load_import_file(csv_path) == ([{"title": "B"}], "csv")
    with pytest.raises(ImportFormatError):
        load_import_file(other)


def test_load_import_file_reads_first_excel_sheet(tmp_path):
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Title", "Priority", "Due Date", "Repeat", "Notes"])
    sheet.append(["Budget review", "High", datetime(2024, 5, 1, 9, 30), "No", None])
    sheet.append([None, None, None, None, None])
    sheet.append(["Water plants", "low", "2024-05-02", "Yes", "balcony"])
    workbook.create_sheet("Metadata").append(["ignored"])
    path = tmp_path / "tasks.xlsx"
    workbook.save(path)

    records, source_type = load_import_file(path)

    assert source_type == "excel"
    assert [r["Title"] for r in records] == ["Budget review", "Water plants"]
    assert records[0]["Notes"] == ""
    candidate = normalize_record(records[0])
    assert candidate.priority == "high"
    assert candidate.due_date == datetime(2024, 5, 1, 9, 30)
    assert candidate.repeat is False


def test_load_import_file_rejects_broken_workbook(tmp_path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"not a zip archive")
    with pytest.raises(ImportFormatError):
        load_import_file(path)


# ----- analysis -----
def test_analyze_classifies_candidates(store, reconciler):
    _existing(store, "Pay rent", priority="low")
    _existing(store, "Call bank", category="office", description="ask about fees")

    analysis = reconciler.analyze(
        [
            {"title": "pay rent", "priority": "low"},
            {"title": "Call bank", "category": "office", "description": "ask about loans", "dueDate": "2024-07-01"},
            {"title": "Buy stamps", "category": "misc"},
            "garbage",
        ]
    )

    assert [i.status for i in analysis.items] == [STATUS_DUPLICATE, STATUS_UPDATED, STATUS_NEW]
    assert analysis.items[1].changes == ["description", "dueDate"]
    assert (analysis.total, analysis.new_count, analysis.duplicate_count, analysis.updated_count) == (3, 1, 2, 1)
    assert analysis.dropped == 1
    assert [i.candidate.title for i in analysis.duplicates_only()] == ["pay rent", "Call bank"]
    assert [i.candidate.title for i in analysis.new_only()] == ["Buy stamps"]


def test_analyze_rejects_empty_batches(reconciler):
    with pytest.raises(ImportFormatError):
        reconciler.analyze([{"title": ""}, 5])


# ----- strategies -----
def test_merge_adds_only_new_candidates(store, reconciler):
    rent = _existing(store, "Pay rent", priority="low")
    analysis = reconciler.analyze(
        [{"title": "Pay rent", "priority": "urgent"}, {"title": "Buy stamps", "category": "misc"}]
    )

    result = reconciler.apply(analysis, "merge")

    assert rent.priority == "low"
    assert [t.title for t in store] == ["Pay rent", "Buy stamps"]
    assert result.added_ids == [store.all()[1].id]
    assert store.all()[1].order == 2.0


def test_update_patches_changed_fields_in_place(store, reconciler):
    rent = _existing(
        store,
        "Pay rent",
        priority="low",
        due_date=datetime(2024, 7, 10, 9, 0),
        reminder=datetime(2024, 7, 9, 9, 0),
    )
    analysis = reconciler.analyze(
        [
            {"title": "Pay rent", "priority": "urgent", "dueDate": "2024-07-01T09:00"},
            {"title": "Buy stamps", "category": "misc"},
        ]
    )

    result = reconciler.apply(analysis, "update")

    assert result.updated_ids == [rent.id]
    assert rent.priority == "urgent"
    assert rent.due_date == datetime(2024, 7, 1, 9, 0)
    assert rent.reminder is None
    assert len(store) == 2


def test_overwrite_requires_confirmation(store, reconciler):
    _existing(store, "Old")
    analysis = reconciler.analyze([{"title": "Old"}, {"title": "New"}])

    with pytest.raises(ConfirmationRequired):
        reconciler.apply(analysis, "overwrite")
    assert [t.title for t in store] == ["Old"]

    result = reconciler.apply(analysis, "overwrite", confirm=True)
    assert result.replaced == 1
    assert [t.title for t in store] == ["Old", "New"]
    assert all(t.id in result.added_ids for t in store)


def test_fresh_tasks_get_new_ids_and_remapped_parents(store, reconciler):
    _existing(store, "Existing")
    analysis = reconciler.analyze(
        [
            {"id": "p1", "title": "Trip", "createdAt": "2020-01-01T00:00:00Z"},
            {"id": "c1", "title": "Pack", "parentId": "p1"},
            {"title": "Loose", "parentId": "nowhere"},
        ],
        match_fields={"title"},
    )

    reconciler.apply(analysis, "merge")

    trip, pack, loose = store.all()[1:]
    assert trip.id not in ("p1", "c1")
    assert pack.parent_id == trip.id
    assert loose.parent_id == "nowhere"
    assert trip.created_at.year != 2020
    assert len({t.id for t in store}) == 4


def test_unknown_strategy(reconciler, store):
    analysis = reconciler.analyze([{"title": "A"}])
    with pytest.raises(ValueError):
        reconciler.apply(analysis, "replace-some")
