"""
TaskGuard - nightly limit enforcement for the scheduling loop.

Every per-window limit check lives here. Each check returns None when the
tick may proceed, or a rejection reason string.
"""

from nightshift.config.loader import NightShiftConfig
from nightshift.scheduler.models import AgentState, Task
from nightshift.utils.logging import get_logger

logger = get_logger(__name__)


class TaskGuard:
    """Centralized limit checker for cycles and per-type caps."""

    def __init__(self, config: NightShiftConfig) -> None:
        self._config = config

    def check_cycles(self, state: AgentState) -> str | None:
        """Check the per-window cycle budget. Returns None=allowed, str=rejection reason."""
        max_cycles = self._config.processing.max_cycles_per_night
        if state.cycles_this_night >= max_cycles:
            logger.debug(
                "tick_rejected_max_cycles",
                agent_id=state.agent_id,
                cycles=state.cycles_this_night,
                max_cycles=max_cycles,
            )
            return (
                f"Max cycles per night ({max_cycles}) reached. "
                f"Cycles this night: {state.cycles_this_night}"
            )
        return None

    def check_task_type(self, state: AgentState, task: Task) -> str | None:
        """Check enablement and the nightly cap for ``task.type``. Returns None=allowed."""
        task_config = self._config.task_config(task.type)
        if task_config is None:
            return None

        if not task_config.enabled:
            logger.debug(
                "task_rejected_disabled",
                agent_id=state.agent_id,
                task_id=task.id,
                task_type=task.type,
            )
            return f"Task type '{task.type}' is disabled"

        cap = task_config.max_per_night
        if cap is None:
            return None
        processed = state.processed_tonight.get(task.type, 0)
        if processed >= cap:
            logger.debug(
                "task_rejected_max_per_night",
                agent_id=state.agent_id,
                task_id=task.id,
                task_type=task.type,
                processed=processed,
                max_per_night=cap,
            )
            return (
                f"Task type '{task.type}' hit max per night ({cap}). "
                f"Processed tonight: {processed}"
            )
        return None
