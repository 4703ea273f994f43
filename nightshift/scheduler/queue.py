"""
Priority task queue for a single agent.

Ordering is by priority (higher first) with arrival order preserved among
equal priorities. Retry exhaustion is enforced lazily: tasks whose attempts
reached the limit are filtered out the next time the queue is read.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Iterator
from uuid import uuid4

if TYPE_CHECKING:
    from nightshift.scheduler.models import Task


def generate_task_id(now: datetime) -> str:
    return f"task_{int(now.timestamp() * 1000)}_{uuid4().hex[:6]}"


class TaskQueue:
    """Ordered, mutable collection of pending tasks owned by one AgentState."""

    def __init__(self, max_attempts: int = 3) -> None:
        self._tasks: list["Task"] = []
        self._max_attempts = max_attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator["Task"]:
        return iter(list(self._tasks))

    def __contains__(self, task: object) -> bool:
        return any(t is task for t in self._tasks)

    def enqueue(self, task: "Task", now: datetime) -> str:
        """
        Insert ``task`` ahead of the first entry with strictly lower priority.

        Assigns an id and enqueue timestamp when the task has none.

        Returns:
            The task id.
        """
        if not task.id:
            task.id = generate_task_id(now)
        if task.queued is None:
            task.queued = now

        index = next(
            (i for i, queued in enumerate(self._tasks) if queued.priority < task.priority),
            None,
        )
        if index is None:
            self._tasks.append(task)
        else:
            self._tasks.insert(index, task)
        return task.id

    def requeue(self, task: "Task") -> None:
        """Put a failed task back at the tail. Priority order is not restored."""
        self._tasks.append(task)

    def dequeue_next(self) -> "Task | None":
        """Drop exhausted tasks, then remove and return the head, if any."""
        self._tasks = [t for t in self._tasks if t.attempts < self._max_attempts]
        if not self._tasks:
            return None
        return self._tasks.pop(0)
