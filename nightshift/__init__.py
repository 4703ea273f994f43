"""
NightShift - off-hours task scheduler for agents

Usage:
    from nightshift import NightShiftScheduler, TaskPaused, load_config

    scheduler = NightShiftScheduler(load_config("nightshift.json"))

    async def contemplate(task, ctx):
        for step in task.payload["steps"]:
            if ctx.paused:
                raise TaskPaused(task.id)
            await do_step(step)

    scheduler.register_task_runner("contemplation", contemplate)
    await scheduler.queue_task("main", {"type": "contemplation", "steps": [...]})
    await scheduler.on_heartbeat("main")
"""

from nightshift.config.loader import NightShiftConfig, load_config
from nightshift.scheduler.exceptions import NightShiftError, TaskPaused, UnknownTimezoneError
from nightshift.scheduler.executor import TaskOutcome
from nightshift.scheduler.models import AgentState, RunContext, Task
from nightshift.scheduler.scheduler import NightShiftScheduler
from nightshift.scheduler.store import StateStore, create_state_store

__all__ = [
    "AgentState",
    "NightShiftConfig",
    "NightShiftError",
    "NightShiftScheduler",
    "RunContext",
    "StateStore",
    "Task",
    "TaskOutcome",
    "TaskPaused",
    "UnknownTimezoneError",
    "create_state_store",
    "load_config",
]
