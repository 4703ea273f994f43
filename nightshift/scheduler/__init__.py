from nightshift.scheduler.exceptions import (
    InvalidAgentIdError,
    NightShiftError,
    TaskPaused,
    UnknownTimezoneError,
)
from nightshift.scheduler.executor import TaskOutcome
from nightshift.scheduler.guard import TaskGuard
from nightshift.scheduler.models import AgentState, RunContext, Task
from nightshift.scheduler.queue import TaskQueue
from nightshift.scheduler.registry import RunnerRegistry, TaskRunner
from nightshift.scheduler.scheduler import NightShiftScheduler
from nightshift.scheduler.store import (
    InMemoryStateStore,
    JsonFileStateStore,
    SQLiteStateStore,
    StateStore,
    create_state_store,
)

__all__ = [
    "AgentState",
    "InMemoryStateStore",
    "InvalidAgentIdError",
    "JsonFileStateStore",
    "NightShiftError",
    "NightShiftScheduler",
    "RunContext",
    "RunnerRegistry",
    "SQLiteStateStore",
    "StateStore",
    "Task",
    "TaskGuard",
    "TaskOutcome",
    "TaskPaused",
    "TaskQueue",
    "TaskRunner",
    "UnknownTimezoneError",
    "create_state_store",
]
