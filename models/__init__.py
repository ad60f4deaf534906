"""Data models exposed by the TaskMaster engine."""
from .record import StoredRecord
from .settings import AppSettings
from .task import Task, TaskDraft

__all__ = ["AppSettings", "StoredRecord", "Task", "TaskDraft"]
