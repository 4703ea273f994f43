"""
Scheduler exceptions.

None of these are fatal to the process. Runner failures and persistence
errors are recovered inside the scheduler; these types mark the cases a
caller or a runner needs to tell apart.
"""


class NightShiftError(Exception):
    """Base exception for all nightshift errors."""

    pass


class TaskPaused(NightShiftError):
    """Raised by a runner that yielded because its task was paused.

    The task goes back on the queue with its attempt count unchanged.
    """

    def __init__(self, task_id: str | None = None, message: str = "") -> None:
        self.task_id = task_id
        super().__init__(message or f"Task '{task_id}' yielded after pause")


class InvalidAgentIdError(NightShiftError, ValueError):
    """Agent id contains characters that cannot key per-agent state."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Invalid agent id: {agent_id!r}")


class UnknownTimezoneError(NightShiftError, ValueError):
    """Timezone name does not resolve to an IANA zone."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown timezone: {name!r}")
