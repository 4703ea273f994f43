import asyncio
from datetime import datetime


class PauseSignal:
    """
    Cooperative pause token for long-running task runners.

    The scheduler never preempts a runner. When the user becomes active it
    triggers this signal, and the runner is expected to check it at its own
    checkpoints and yield.

    Examples:
        >>> signal = PauseSignal()
        >>>
        >>> # Interruption handler
        >>> signal.pause()
        >>>
        >>> # Inside a runner, between work units
        >>> if signal.is_paused():
        >>>     raise TaskPaused(task.id)
        >>>
        >>> # Or race a work unit against the pause
        >>> await signal.wait()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._paused_at: datetime | None = None

    def pause(self, at: datetime | None = None) -> None:
        """Trigger the pause. Repeated calls keep the first timestamp."""
        if self._paused_at is None:
            self._paused_at = at
        self._event.set()

    def is_paused(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Async wait until the pause is triggered."""
        await self._event.wait()

    @property
    def paused_at(self) -> datetime | None:
        return self._paused_at

    def reset(self) -> None:
        """Clear the pause so the token can be reused for the next run."""
        self._event.clear()
        self._paused_at = None
