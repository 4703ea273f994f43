"""
TaskExecutor - runs one dequeued task and applies its outcome.

Extracted from scheduler.py so the tick state machine stays readable. The
executor never lets a runner exception escape; it maps every invocation to
a TaskOutcome and updates the agent's queue and counters accordingly.
"""

import asyncio
import inspect
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from nightshift.scheduler.exceptions import TaskPaused
from nightshift.scheduler.models import AgentState, RunContext, Task
from nightshift.scheduler.registry import RunnerRegistry
from nightshift.utils.logging import get_logger

if TYPE_CHECKING:
    from nightshift.scheduler.scheduler import NightShiftScheduler

logger = get_logger(__name__)


class TaskOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PAUSED = "paused"
    NO_RUNNER = "no_runner"
    DROPPED = "dropped"


class TaskExecutor:
    """
    Invokes the registered runner for a task.

    Responsible for:
    - Resolving the runner (missing runner consumes the task)
    - Building the RunContext handed to the runner
    - Retry bookkeeping on failure (tail re-queue, attempt limit)
    - Re-enqueueing a task whose runner yielded with TaskPaused
    """

    def __init__(
        self,
        registry: RunnerRegistry,
        scheduler: "NightShiftScheduler | None",
        clock: Callable[[], datetime],
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._clock = clock

    async def execute(
        self, state: AgentState, task: Task, host_context: Any = None
    ) -> TaskOutcome:
        runner = self._registry.lookup(task.type)
        if runner is None:
            logger.warning(
                "task_runner_missing",
                agent_id=state.agent_id,
                task_id=task.id,
                task_type=task.type,
            )
            return TaskOutcome.NO_RUNNER

        task.resume()
        context = RunContext(
            agent_id=state.agent_id,
            pause_signal=task.pause_signal,
            host_context=host_context,
            scheduler=self._scheduler,
        )
        logger.info(
            "task_running",
            agent_id=state.agent_id,
            task_id=task.id,
            task_type=task.type,
            attempts=task.attempts,
        )

        try:
            if inspect.iscoroutinefunction(runner):
                result = runner(task, context)
            else:
                # Plain callables run on a worker thread; the loop must stay free.
                result = await asyncio.to_thread(runner, task, context)
            if inspect.isawaitable(result):
                await result
        except TaskPaused:
            state.task_queue.enqueue(task, self._clock())
            logger.info(
                "task_yielded_on_pause",
                agent_id=state.agent_id,
                task_id=task.id,
                task_type=task.type,
            )
            return TaskOutcome.PAUSED
        except Exception as e:
            task.attempts += 1
            logger.error(
                "task_failed",
                agent_id=state.agent_id,
                task_id=task.id,
                task_type=task.type,
                attempts=task.attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            if task.attempts < state.task_queue.max_attempts:
                state.task_queue.requeue(task)
            else:
                logger.warning(
                    "task_abandoned",
                    agent_id=state.agent_id,
                    task_id=task.id,
                    task_type=task.type,
                    attempts=task.attempts,
                )
            return TaskOutcome.FAILED

        state.processed_tonight[task.type] = state.processed_tonight.get(task.type, 0) + 1
        logger.info(
            "task_succeeded",
            agent_id=state.agent_id,
            task_id=task.id,
            task_type=task.type,
        )
        return TaskOutcome.SUCCEEDED
