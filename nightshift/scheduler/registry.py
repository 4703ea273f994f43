"""
Task runner registry.

Maps a task type to the callable that executes it. Collaborators register
runners through an explicit scheduler handle at any time, including after
the scheduler has started; the last registration for a type wins.
"""

import threading
from typing import Any, Awaitable, Callable, Union

from nightshift.utils.logging import get_logger

logger = get_logger(__name__)

# (task, RunContext) -> None | Awaitable[None]. Raising signals failure.
TaskRunner = Callable[[Any, Any], Union[Awaitable[None], None]]


class RunnerRegistry:
    """Thread-safe ``task type -> runner`` map."""

    def __init__(self) -> None:
        self._runners: dict[str, TaskRunner] = {}
        self._lock = threading.Lock()

    def register(self, task_type: str, runner: TaskRunner) -> None:
        if not task_type:
            raise ValueError("task_type must be a non-empty string")
        if not callable(runner):
            raise TypeError(f"Runner for '{task_type}' is not callable")
        with self._lock:
            replaced = task_type in self._runners
            self._runners[task_type] = runner
        logger.info("task_runner_registered", task_type=task_type, replaced=replaced)

    def lookup(self, task_type: str) -> TaskRunner | None:
        with self._lock:
            return self._runners.get(task_type)

    def registered_types(self) -> list[str]:
        with self._lock:
            return sorted(self._runners)

    def __contains__(self, task_type: object) -> bool:
        with self._lock:
            return task_type in self._runners
