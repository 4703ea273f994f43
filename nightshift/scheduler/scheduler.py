"""
NightShiftScheduler - the orchestration layer for off-hours task processing.

Owns one AgentState per agent id and drives the per-agent tick state machine:
window open, user idle, not already processing, cycle budget left, a task
available, task type allowed. Only then is a runner invoked. Host events
(conversation end, agent start, heartbeat) arrive through explicit async
entry points; an optional background loop can deliver ticks instead.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable

from nightshift.config.loader import NightShiftConfig, is_valid_timezone, load_config
from nightshift.config.settings import NightShiftSettings, settings
from nightshift.scheduler.exceptions import UnknownTimezoneError
from nightshift.scheduler.executor import TaskExecutor, TaskOutcome
from nightshift.scheduler.guard import TaskGuard
from nightshift.scheduler.models import (
    DEFAULT_AGENT_ID,
    AgentState,
    Task,
    parse_timestamp,
    resolve_agent_id,
    utc_now,
)
from nightshift.scheduler.queue import TaskQueue
from nightshift.scheduler.registry import RunnerRegistry, TaskRunner
from nightshift.scheduler.store import StateStore, create_state_store
from nightshift.scheduler.triggers import TriggerDetector, last_user_text
from nightshift.scheduler.window import is_in_window, is_user_active
from nightshift.utils.logging import bind_agent_context, clear_agent_context, get_logger
from nightshift.utils.tojson import isoformat

logger = get_logger(__name__)

_TIMESTAMP_FIELDS = {
    "goodNightTime": "good_night_time",
    "lastMorningGreeting": "last_morning_greeting",
    "lastUserActivity": "last_user_activity",
}


class NightShiftScheduler:
    """
    Time-window task scheduler.

    Usage (host-driven ticks):
        scheduler = NightShiftScheduler(load_config("nightshift.json"))
        scheduler.register_task_runner("contemplation", run_contemplation)
        await scheduler.queue_task("main", {"type": "contemplation", "topic": "..."})

        await scheduler.on_agent_end("main", messages)   # after every conversation turn
        await scheduler.on_before_agent_start("main")    # before the agent answers the user
        await scheduler.on_heartbeat("main")             # periodically

    Usage (built-in tick loop):
        async with NightShiftScheduler.from_settings() as scheduler:
            scheduler.register_task_runner("metabolism", run_metabolism)
            ...
    """

    def __init__(
        self,
        config: NightShiftConfig | None = None,
        *,
        store: StateStore | None = None,
        registry: RunnerRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
        data_dir: str | Path | None = None,
    ) -> None:
        self._config = config or NightShiftConfig()
        self._data_dir = Path(data_dir or settings.data_dir)
        self._store = store or create_state_store(self._config.state, self._data_dir)
        self._registry = registry or RunnerRegistry()
        self._clock = clock or utc_now
        self._guard = TaskGuard(self._config)
        self._triggers = TriggerDetector(self._config.triggers)
        self._executor = TaskExecutor(self._registry, self, self._clock)
        self._states: dict[str, AgentState] = {}
        self._load_locks: dict[str, asyncio.Lock] = {}
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._tick_tasks: dict[str, asyncio.Task] = {}

        if not self._config.enabled:
            logger.info("scheduler_disabled")

    @classmethod
    def from_settings(
        cls, app_settings: NightShiftSettings | None = None, **kwargs: Any
    ) -> "NightShiftScheduler":
        """Build a scheduler from environment settings (config file + data dir)."""
        app_settings = app_settings or settings
        config = load_config(app_settings.config_path)
        kwargs.setdefault("data_dir", app_settings.data_dir)
        return cls(config, **kwargs)

    @property
    def config(self) -> NightShiftConfig:
        return self._config

    @property
    def registry(self) -> RunnerRegistry:
        return self._registry

    @property
    def is_running(self) -> bool:
        return self._running

    def agent_ids(self) -> list[str]:
        return list(self._states)

    # ──────────────────────────────────────────────────────────────────────
    # Registration API
    # ──────────────────────────────────────────────────────────────────────

    def register_task_runner(self, task_type: str, runner: TaskRunner) -> None:
        self._registry.register(task_type, runner)

    async def queue_task(self, agent_id: str | None, task: Task | dict[str, Any]) -> str:
        """
        Enqueue a task for an agent and return its id.

        Dict tasks without a ``priority`` take the priority configured for
        their type (0 for unconfigured types).
        """
        state = await self.get_agent_state(agent_id)
        if isinstance(task, dict):
            task_config = self._config.task_config(str(task.get("type") or ""))
            default_priority = task_config.priority if task_config else 0
            task = Task.from_dict(task, default_priority=default_priority)
        elif not isinstance(task, Task):
            raise TypeError(f"Expected Task or dict, got {type(task).__name__}")

        task_id = state.task_queue.enqueue(task, self._clock())
        logger.info(
            "task_queued",
            agent_id=state.agent_id,
            task_id=task_id,
            task_type=task.type,
            priority=task.priority,
            queue_size=len(state.task_queue),
        )
        return task_id

    async def is_in_office_hours(self, agent_id: str | None = None) -> bool:
        state = await self.get_agent_state(agent_id)
        return is_in_window(state, self._config, self._clock())

    async def is_user_active(self, agent_id: str | None = None) -> bool:
        state = await self.get_agent_state(agent_id)
        return is_user_active(state, self._config, self._clock())

    async def set_timezone(self, agent_id: str | None, timezone_name: str | None = None) -> str:
        """Override an agent's timezone; None restores the configured default."""
        name = timezone_name or self._config.default_timezone
        if not is_valid_timezone(name):
            raise UnknownTimezoneError(name)
        state = await self.get_agent_state(agent_id)
        state.timezone = name
        logger.info("timezone_set", agent_id=state.agent_id, timezone=name)
        await self._save_state(state)
        return name

    async def snapshot(self, agent_id: str | None = None) -> dict[str, Any]:
        """Query view of an agent's state. Queued tasks are reported as a count only."""
        state = await self.get_agent_state(agent_id)
        now = self._clock()
        current = state.current_task
        return {
            "agent_id": state.agent_id,
            "is_in_office_hours": is_in_window(state, self._config, now),
            "is_user_active": is_user_active(state, self._config, now),
            "is_processing": state.is_processing,
            "current_task": current.summary() if current is not None else None,
            "queued_tasks": len(state.task_queue),
            "cycles_this_night": state.cycles_this_night,
            "processed_tonight": dict(state.processed_tonight),
            "good_night_time": isoformat(state.good_night_time),
            "last_morning_greeting": isoformat(state.last_morning_greeting),
            "last_user_activity": isoformat(state.last_user_activity),
            "timezone": state.timezone,
        }

    # ──────────────────────────────────────────────────────────────────────
    # Agent State
    # ──────────────────────────────────────────────────────────────────────

    async def get_agent_state(self, agent_id: str | None = None) -> AgentState:
        """Return the agent's state, loading it from the store on first reference."""
        key = resolve_agent_id(agent_id)
        state = self._states.get(key)
        if state is not None:
            return state
        # Per-agent lock: loads for different agents proceed independently.
        lock = self._load_locks.setdefault(key, asyncio.Lock())
        async with lock:
            state = self._states.get(key)
            if state is None:
                state = await self._load_state(key)
                self._states[key] = state
                logger.info("agent_state_initialized", agent_id=key)
        self._load_locks.pop(key, None)
        return state

    def _new_state(self, agent_id: str) -> AgentState:
        return AgentState(
            agent_id=agent_id,
            timezone=self._config.default_timezone,
            task_queue=TaskQueue(max_attempts=self._config.processing.max_attempts),
        )

    async def _load_state(self, agent_id: str) -> AgentState:
        try:
            record = await self._store.load(agent_id)
        except Exception as e:
            logger.warning(
                "state_load_failed",
                agent_id=agent_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._new_state(agent_id)

        if record is None:
            return self._new_state(agent_id)
        if not isinstance(record, dict):
            logger.warning(
                "state_load_failed",
                agent_id=agent_id,
                error="stored record is not an object",
                error_type=type(record).__name__,
            )
            return self._new_state(agent_id)

        for key in _TIMESTAMP_FIELDS:
            raw = record.get(key)
            if raw is not None and parse_timestamp(raw) is None:
                logger.warning("state_field_unparseable", agent_id=agent_id, field=key)

        return AgentState.from_record(
            agent_id,
            record,
            default_timezone=self._config.default_timezone,
            max_attempts=self._config.processing.max_attempts,
        )

    async def _save_state(self, state: AgentState) -> None:
        try:
            await self._store.save(state.agent_id, state.to_record(self._clock()))
        except Exception as e:
            logger.warning(
                "state_save_failed",
                agent_id=state.agent_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    # ──────────────────────────────────────────────────────────────────────
    # Host Events
    # ──────────────────────────────────────────────────────────────────────

    async def on_agent_end(self, agent_id: str | None, messages: Iterable[Any] | None) -> None:
        """Record activity and scan the latest user message for good-night/morning phrases."""
        state = await self.get_agent_state(agent_id)
        token = bind_agent_context(state.agent_id)
        try:
            now = self._clock()
            state.last_user_activity = now

            text = last_user_text(messages)
            if self._triggers.detect_good_night(text):
                state.good_night_time = now
                state.reset_nightly_counters()
                logger.info(
                    "good_night_detected",
                    agent_id=state.agent_id,
                    buffer_minutes=self._config.schedule.good_night_buffer_minutes,
                )
            if self._triggers.detect_morning(text):
                state.last_morning_greeting = now
                state.good_night_time = None
                logger.info("morning_detected", agent_id=state.agent_id)

            await self._save_state(state)
        finally:
            clear_agent_context(token)

    async def on_before_agent_start(self, agent_id: str | None) -> None:
        """Flag the in-flight task as paused and record user activity."""
        state = await self.get_agent_state(agent_id)
        now = self._clock()
        task = state.current_task
        if state.is_processing and task is not None:
            task.pause(now)
            logger.info(
                "task_pause_requested",
                agent_id=state.agent_id,
                task_id=task.id,
                task_type=task.type,
            )
        state.last_user_activity = now

    # ──────────────────────────────────────────────────────────────────────
    # Tick State Machine
    # ──────────────────────────────────────────────────────────────────────

    async def tick(self, agent_id: str | None = None, context: Any = None) -> TaskOutcome | None:
        """
        Run at most one task for the agent.

        Returns the outcome of the task that was attempted, or None when a
        gate stopped the tick before any task was dequeued.
        """
        if not self._config.enabled:
            return None
        state = await self.get_agent_state(agent_id)
        token = bind_agent_context(state.agent_id)
        try:
            return await self._run_tick(state, context)
        finally:
            clear_agent_context(token)

    on_heartbeat = tick

    async def _run_tick(self, state: AgentState, context: Any) -> TaskOutcome | None:
        # No await between the gate checks and is_processing = True; the flag
        # is the single-flight guard.
        now = self._clock()
        if not is_in_window(state, self._config, now):
            return None
        if is_user_active(state, self._config, now):
            logger.debug("tick_skipped", agent_id=state.agent_id, reason="user_active")
            return None
        if state.is_processing:
            logger.debug("tick_skipped", agent_id=state.agent_id, reason="processing")
            return None
        if self._guard.check_cycles(state) is not None:
            return None

        task = state.task_queue.dequeue_next()
        if task is None:
            return None
        if self._guard.check_task_type(state, task) is not None:
            return TaskOutcome.DROPPED

        state.is_processing = True
        state.current_task = task
        try:
            return await self._executor.execute(state, task, context)
        finally:
            state.is_processing = False
            state.current_task = None
            state.cycles_this_night += 1
            await self._save_state(state)

    # ──────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the background tick loop."""
        if self._running:
            return
        if not self._config.enabled:
            logger.info("scheduler_disabled")
            return
        await self.get_agent_state(DEFAULT_AGENT_ID)
        self._running = True
        self._loop_task = asyncio.create_task(self._loop())
        logger.info(
            "scheduler_started",
            tick_interval=self._config.processing.tick_interval_seconds,
            task_types=self._registry.registered_types(),
        )

    async def stop(self) -> None:
        """Stop the loop, give in-flight ticks a grace period, then close the store."""
        self._running = False

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        active = [t for t in self._tick_tasks.values() if not t.done()]
        if active:
            logger.info("scheduler_waiting_for_active_ticks", count=len(active))
            _, pending = await asyncio.wait(
                active, timeout=self._config.processing.shutdown_grace_seconds
            )
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        self._tick_tasks.clear()

        await self._store.close()
        logger.info("scheduler_stopped")

    async def __aenter__(self) -> "NightShiftScheduler":
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    async def _loop(self) -> None:
        logger.info("scheduler_loop_started")
        while self._running:
            self._dispatch_ticks()
            await asyncio.sleep(self._config.processing.tick_interval_seconds)

    def _dispatch_ticks(self) -> None:
        """Start one tick task per known agent, skipping agents whose last tick is still running."""
        for agent_id in list(self._states):
            running = self._tick_tasks.get(agent_id)
            if running is not None and not running.done():
                continue
            task = asyncio.create_task(self.tick(agent_id))
            self._tick_tasks[agent_id] = task
            task.add_done_callback(self._on_tick_done)

    @staticmethod
    def _on_tick_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "scheduler_tick_error",
                error=str(exc),
                error_type=type(exc).__name__,
            )
