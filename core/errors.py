"""Exceptions raised by the task engine."""
from __future__ import annotations

from typing import Iterable


class TaskEngineError(Exception):
    """Base class for engine errors."""


class ValidationError(TaskEngineError, ValueError):
    """Input rejected before anything was mutated."""


class BlockedByRecurrenceSuccessor(TaskEngineError):
    """Removal refused because a recurrence successor still references a task.

    ``blocked_ids`` are the tasks that cannot be removed, ``successor_ids``
    the live tasks pointing at them through ``previous_instance_id``.
    """

    def __init__(self, blocked_ids: Iterable[str], successor_ids: Iterable[str] = ()):
        self.blocked_ids = tuple(blocked_ids)
        self.successor_ids = tuple(successor_ids)
        count = len(self.blocked_ids)
        super().__init__(
            f"Cannot remove {count} completed recurring task(s) while their next "
            f"instance exists: {', '.join(self.blocked_ids)}"
        )


class PersistenceFailure(TaskEngineError):
    """The backing store rejected a read or write."""


class ImportFormatError(TaskEngineError, ValueError):
    """Import input could not be parsed or contained no tasks."""


class ConfirmationRequired(TaskEngineError):
    """A destructive operation was invoked without explicit confirmation."""


__all__ = [
    "BlockedByRecurrenceSuccessor",
    "ConfirmationRequired",
    "ImportFormatError",
    "PersistenceFailure",
    "TaskEngineError",
    "ValidationError",
]
