# taskmaster/services/engine.py
from __future__ import annotations

import logging
import threading
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, MutableMapping, Optional, Tuple

from core.errors import ConfirmationRequired, PersistenceFailure
from core.log import ensure_logger
from core.settings import AUTOSAVE, ENGINE, AutoSaveSettings, EnginePolicy
from models.settings import AppSettings
from models.task import Task, TaskDraft
from services.autosave import AutoSaver
from services.export import export_payload, export_rows
from services.history import HistoryManager, Snapshot
from services.importer import (
    DEFAULT_MATCH_FIELDS,
    ImportAnalysis,
    ImportReconciler,
    ImportResult,
    load_import_file,
)
from services.insights import InsightSummary, summarize
from services.pipeline import FilterCounts, TaskPage, TaskQuery, filter_counts, run_pipeline
from services.reminders import due_reminders
from services.task_store import (
    EVENTS,
    BulkDeleteResult,
    CompletionResult,
    DeleteResult,
    TaskStore,
)
from storage.config import load_settings, update_settings
from storage.db import get_engine, get_session, init_db
from storage.repository import load_tasks, save_tasks
from storage.store import KeyValueStore, SQLModelKeyValueStore
from utils.datetime_utils import utc_now


logger = logging.getLogger("taskmaster.engine")


class TaskEngine:
    """Entry point for user intents.

    Each intent that changes the collection records exactly one history
    entry. Every store change (including undo/redo restores) marks the
    collection dirty and, when auto-save is enabled, re-arms the debounced
    writer.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        kv_store: Optional[KeyValueStore] = None,
        settings: Optional[AppSettings] = None,
        policy: EnginePolicy = ENGINE,
        autosave: AutoSaveSettings = AUTOSAVE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or store.defaults
        self.store = store
        self.store.defaults = self.settings
        self.policy = policy
        self.kv_store = kv_store
        self.history = HistoryManager(store, max_size=policy.history_max_size, clock=clock)
        self.importer = ImportReconciler(store, policy=policy, clock=clock)
        self._autosave_enabled = autosave.enabled
        self._unsaved: Tuple[Task, ...] = store.snapshot()
        self._unsaved_lock = threading.Lock()
        self.autosaver: Optional[AutoSaver] = None
        if kv_store is not None:
            self.autosaver = AutoSaver(
                self._write, delay=autosave.delay_sec, on_error=self._on_save_error
            )
        for event in EVENTS:
            self.store.subscribe(event, self._on_change)
        self.history.reset("Initial state")

    @classmethod
    def open(
        cls,
        kv_store: KeyValueStore,
        *,
        policy: EnginePolicy = ENGINE,
        autosave: AutoSaveSettings = AUTOSAVE,
        clock: Callable[[], datetime] = utc_now,
    ) -> "TaskEngine":
        """Load settings and tasks from ``kv_store``."""
        settings = load_settings(kv_store)
        tasks = load_tasks(kv_store, settings)
        store = TaskStore(tasks, defaults=settings, policy=policy, clock=clock)
        logger.info("Loaded %d task(s)", len(store))
        return cls(
            store,
            kv_store=kv_store,
            settings=settings,
            policy=policy,
            autosave=autosave,
            clock=clock,
        )

    # ---------- persistence ----------
    def _on_change(self, _task_ids) -> None:
        if self.autosaver is None:
            return
        # Snapshot on the mutating thread; the timer thread only reads _unsaved.
        snapshot = self.store.snapshot()
        with self._unsaved_lock:
            self._unsaved = snapshot
        if self._autosave_enabled:
            self.autosaver.schedule()
        else:
            self.autosaver.mark_dirty()

    def _write(self) -> None:
        if self.kv_store is None:
            return
        with self._unsaved_lock:
            tasks = self._unsaved
        save_tasks(self.kv_store, tasks)

    def _on_save_error(self, exc: PersistenceFailure) -> None:
        logger.error("Tasks could not be saved: %s", exc)

    @property
    def last_save_error(self) -> Optional[PersistenceFailure]:
        return self.autosaver.last_error if self.autosaver else None

    def save(self) -> bool:
        """Write pending changes now. Raises :class:`PersistenceFailure`."""
        if self.autosaver is None:
            return False
        return self.autosaver.flush()

    def close(self) -> None:
        try:
            self.save()
        finally:
            if self.autosaver is not None:
                self.autosaver.cancel()
            for event in EVENTS:
                self.store.unsubscribe(event, self._on_change)

    def update_settings(self, **changes: Any) -> AppSettings:
        if self.kv_store is not None:
            self.settings = update_settings(self.kv_store, **changes)
        else:
            for key, value in changes.items():
                if hasattr(self.settings, key) and key != "id":
                    setattr(self.settings, key, value)
        self.store.defaults = self.settings
        return self.settings

    # ---------- intents ----------
    def _commit(self, label: str) -> Snapshot:
        return self.history.record(label)

    def add_task(self, draft: TaskDraft) -> Task:
        task = self.store.create(draft)
        self._commit(f"Add task: {task.title}")
        return task

    def quick_add(self, title: str) -> Task:
        task = self.store.create(TaskDraft(title=title))
        self._commit(f"Quick add: {task.title}")
        return task

    def add_subtask(self, parent_id: str, draft: TaskDraft) -> Optional[Task]:
        parent = self.store.find_by_id(parent_id)
        if parent is None:
            logger.debug("Subtask skipped, parent %s not found", parent_id)
            return None
        draft = draft.model_copy(
            update={
                "parent_id": parent.id,
                "category": draft.category or parent.category,
                "priority": draft.priority or parent.priority,
            }
        )
        task = self.store.create(draft)
        self._commit(f"Add subtask: {task.title}")
        return task

    def edit_task(self, task_id: str, **patch: Any) -> Optional[Task]:
        task = self.store.update(task_id, **patch)
        if task is not None:
            self._commit(f"Edit task: {task.title}")
        return task

    def delete_task(self, task_id: str) -> Optional[DeleteResult]:
        task = self.store.find_by_id(task_id)
        result = self.store.delete(task_id)
        if result is not None and task is not None:
            self._commit(f"Delete task: {task.title}")
        return result

    def delete_selected(self, task_ids: Iterable[str]) -> BulkDeleteResult:
        result = self.store.delete_many(task_ids)
        if result.removed_ids:
            self._commit(f"Delete {len(result.removed_ids)} task(s)")
        return result

    def clear_all(self, *, confirm: bool = False) -> int:
        if not confirm:
            raise ConfirmationRequired("Clearing deletes every task; pass confirm=True to proceed")
        removed = self.store.clear()
        self._commit("Clear all tasks")
        logger.info("Cleared %d task(s)", removed)
        return removed

    def toggle_task(self, task_id: str) -> Optional[CompletionResult]:
        result = self.store.toggle_completed(task_id)
        if result is None:
            return None
        verb = "Complete" if result.task.completed else "Reopen"
        self._commit(f"{verb} task: {result.task.title}")
        return result

    def move_task(
        self,
        task_id: str,
        *,
        before_id: Optional[str] = None,
        after_id: Optional[str] = None,
    ) -> Optional[Task]:
        task = self.store.move(task_id, before_id=before_id, after_id=after_id)
        if task is not None:
            self._commit("Reorder tasks")
        return task

    def toggle_collapsed(self, task_id: str) -> Optional[Task]:
        return self.store.toggle_collapsed(task_id)

    # ---------- import ----------
    def analyze_import(
        self,
        records: Iterable[Any],
        *,
        match_fields: Iterable[str] = DEFAULT_MATCH_FIELDS,
        source_type: str = "",
    ) -> ImportAnalysis:
        return self.importer.analyze(records, match_fields=match_fields, source_type=source_type)

    def analyze_file(
        self, path: Path, *, match_fields: Iterable[str] = DEFAULT_MATCH_FIELDS
    ) -> ImportAnalysis:
        records, source_type = load_import_file(path)
        return self.analyze_import(records, match_fields=match_fields, source_type=source_type)

    def apply_import(
        self, analysis: ImportAnalysis, strategy: str, *, confirm: bool = False
    ) -> ImportResult:
        result = self.importer.apply(analysis, strategy, confirm=confirm)
        self._commit(
            f"Import ({strategy}): {len(result.added_ids)} added, {len(result.updated_ids)} updated"
        )
        logger.info(
            "Import applied with %s: %d added, %d updated",
            strategy,
            len(result.added_ids),
            len(result.updated_ids),
        )
        return result

    # ---------- history ----------
    def undo(self) -> Optional[Snapshot]:
        return self.history.undo()

    def redo(self) -> Optional[Snapshot]:
        return self.history.redo()

    # ---------- read side ----------
    def view(self, query: Optional[TaskQuery] = None, now: Optional[datetime] = None) -> TaskPage:
        if query is None:
            query = TaskQuery(page_size=self.policy.default_page_size)
        return run_pipeline(self.store.all(), query, now or datetime.now(), policy=self.policy)

    def counts(self, now: Optional[datetime] = None) -> FilterCounts:
        return filter_counts(self.store.all(), now or datetime.now())

    def insights(self, now: Optional[datetime] = None) -> InsightSummary:
        return summarize(self.store.all(), now or datetime.now())

    def reminders(
        self,
        now: Optional[datetime] = None,
        notified: Optional[MutableMapping[str, str]] = None,
    ) -> List[Task]:
        return due_reminders(
            self.store.all(),
            now or datetime.now(),
            window_seconds=self.policy.reminder_window_seconds,
            notified=notified,
        )

    def export(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return export_payload(self.store.all(), now or utc_now())

    def export_rows(self) -> List[Dict[str, Any]]:
        return export_rows(self.store.all())


def open_engine(db_path: Optional[Path] = None, **kwargs: Any) -> TaskEngine:
    """Open the engine on the sqlite database at ``db_path`` (default location otherwise)."""
    ensure_logger()
    engine = init_db(get_engine(db_path))
    kv_store = SQLModelKeyValueStore(partial(get_session, engine))
    return TaskEngine.open(kv_store, **kwargs)


__all__ = ["TaskEngine", "open_engine"]
