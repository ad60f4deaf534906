"""Bounded linear undo/redo over full snapshots of the task collection."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from core.settings import ENGINE
from models.task import Task
from services.task_store import TaskStore
from utils.datetime_utils import utc_now


logger = logging.getLogger("taskmaster.history")


@dataclass(frozen=True)
class Snapshot:
    label: str
    timestamp: datetime
    tasks: Tuple[Task, ...]


class HistoryManager:
    """Append-only snapshot log with a cursor.

    Snapshots hold private copies of every task, so later in-place edits of
    the live collection never leak into recorded states.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        max_size: int = ENGINE.history_max_size,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.store = store
        self.max_size = max_size
        self._clock = clock
        self._entries: List[Snapshot] = []
        self._cursor = -1

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def entries(self) -> List[Snapshot]:
        return list(self._entries)

    @property
    def current(self) -> Optional[Snapshot]:
        if self._cursor < 0:
            return None
        return self._entries[self._cursor]

    def __len__(self) -> int:
        return len(self._entries)

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._entries) - 1

    def record(self, label: str) -> Snapshot:
        del self._entries[self._cursor + 1:]
        snapshot = Snapshot(label=label, timestamp=self._clock(), tasks=self.store.snapshot())
        self._entries.append(snapshot)
        if len(self._entries) > self.max_size:
            self._entries.pop(0)
        else:
            self._cursor += 1
        logger.debug("History recorded %r (%d/%d)", label, self._cursor + 1, len(self._entries))
        return snapshot

    def undo(self) -> Optional[Snapshot]:
        """Step back; returns the snapshot that was undone, or ``None``."""
        if not self.can_undo():
            return None
        undone = self._entries[self._cursor]
        self._cursor -= 1
        self.store.restore(self._entries[self._cursor].tasks)
        logger.info("Undo: %s", undone.label)
        return undone

    def redo(self) -> Optional[Snapshot]:
        """Step forward; returns the snapshot that was re-applied, or ``None``."""
        if not self.can_redo():
            return None
        self._cursor += 1
        redone = self._entries[self._cursor]
        self.store.restore(redone.tasks)
        logger.info("Redo: %s", redone.label)
        return redone

    def reset(self, label: str = "Initial state") -> Snapshot:
        self._entries = []
        self._cursor = -1
        return self.record(label)


__all__ = ["HistoryManager", "Snapshot"]
