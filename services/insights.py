"""Plain-language summary of the task collection (workload and progress)."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List

from models.task import Task
from utils.datetime_utils import start_of_day


EMPTY_MESSAGE = "Start adding tasks to get personalized insights."
FALLBACK_MESSAGE = "Your task list is looking manageable. Keep up the good work!"

# More high-priority tasks than this triggers the "break them down" hint.
HIGH_PRIORITY_LIMIT = 3


@dataclass(frozen=True)
class InsightSummary:
    total: int = 0
    completed: int = 0
    pending: int = 0
    completion_rate: int = 0
    overdue: int = 0
    due_today: int = 0
    messages: List[str] = field(default_factory=list)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def completion_rate(completed: int, total: int) -> int:
    """Whole percent, halves rounded up."""
    if total <= 0:
        return 0
    return int(math.floor(completed * 100 / total + 0.5))


def generate_insights(tasks: Iterable[Task], now: datetime) -> List[str]:
    tasks = list(tasks)
    pending = [t for t in tasks if not t.completed]
    messages: List[str] = []

    urgent = sum(1 for t in pending if t.priority == "urgent")
    if urgent:
        verb = "needs" if urgent == 1 else "need"
        messages.append(
            f"You have {_plural(urgent, 'urgent task')} that {verb} immediate attention."
        )

    high = sum(1 for t in pending if t.priority == "high")
    if high > HIGH_PRIORITY_LIMIT:
        messages.append(
            f"You have {high} high-priority tasks. "
            "Consider breaking them down into smaller, manageable chunks."
        )

    overdue = sum(1 for t in pending if t.due_date is not None and t.due_date < now)
    if overdue:
        if overdue == 1:
            messages.append("1 task is overdue. Prioritize completing this first.")
        else:
            messages.append(f"{overdue} tasks are overdue. Prioritize completing these first.")

    today = start_of_day(now)
    week_end = today + timedelta(days=7)
    this_week = sum(
        1 for t in pending if t.due_date is not None and today <= t.due_date < week_end
    )
    if this_week:
        messages.append(
            f"You have {_plural(this_week, 'task')} due this week. Plan your time accordingly."
        )

    done = len(tasks) - len(pending)
    if done:
        rate = completion_rate(done, len(tasks))
        if rate >= 70:
            messages.append(
                f"Great job! You've completed {rate}% of your tasks. Keep up the excellent work!"
            )
        elif rate >= 40:
            messages.append(f"You're making progress with a {rate}% completion rate. Keep going!")
        else:
            messages.append(
                f"Your completion rate is {rate}%. "
                "Focus on completing a few tasks each day to improve."
            )

    if tasks and not pending:
        messages.append(
            "Amazing! You have no pending tasks. "
            "Enjoy your free time or plan ahead for upcoming projects."
        )

    if tasks and not messages:
        messages.append(FALLBACK_MESSAGE)
    return messages


def summarize(tasks: Iterable[Task], now: datetime) -> InsightSummary:
    """Totals plus :func:`generate_insights`; ``now`` is naive local time."""
    tasks = list(tasks)
    if not tasks:
        return InsightSummary(messages=[EMPTY_MESSAGE])
    pending = [t for t in tasks if not t.completed]
    completed = len(tasks) - len(pending)
    return InsightSummary(
        total=len(tasks),
        completed=completed,
        pending=len(pending),
        completion_rate=completion_rate(completed, len(tasks)),
        overdue=sum(1 for t in pending if t.due_date is not None and t.due_date < now),
        due_today=sum(
            1 for t in pending if t.due_date is not None and t.due_date.date() == now.date()
        ),
        messages=generate_insights(tasks, now),
    )


__all__ = [
    "EMPTY_MESSAGE",
    "FALLBACK_MESSAGE",
    "InsightSummary",
    "completion_rate",
    "generate_insights",
    "summarize",
]
