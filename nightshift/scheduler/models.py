"""
Scheduler data models.

Defines the core data structures for night-shift scheduling:
Task, AgentState, RunContext, and the timestamp helpers used by the
persisted state record.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from nightshift.config.loader import is_valid_timezone
from nightshift.scheduler.exceptions import InvalidAgentIdError
from nightshift.scheduler.queue import TaskQueue
from nightshift.utils.pause_signal import PauseSignal
from nightshift.utils.tojson import isoformat

if TYPE_CHECKING:
    from nightshift.scheduler.scheduler import NightShiftScheduler

DEFAULT_AGENT_ID = "main"

_AGENT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_agent_id(agent_id: str | None) -> str:
    """Absent ids map to ``main``; anything else must be a safe identifier."""
    if not agent_id:
        return DEFAULT_AGENT_ID
    if not _AGENT_ID_RE.match(agent_id):
        raise InvalidAgentIdError(agent_id)
    return agent_id


def parse_timestamp(value: Any) -> datetime | None:
    """
    Coerce a stored timestamp to an aware datetime.

    Accepts datetimes, ISO-8601 strings (a trailing ``Z`` is allowed) and
    epoch milliseconds. Naive values are taken as UTC. Anything that cannot
    be parsed yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)
    return None


_TASK_KEYS = {"id", "type", "priority", "attempts", "queued", "paused", "paused_at", "pausedAt"}


@dataclass
class Task:
    """
    A unit of deferred work.

    ``payload`` carries every extra field the producer attached; the
    scheduler never reads it and hands it to the runner untouched.
    ``paused``/``paused_at`` are advisory flags set by the interruption
    handler; ``pause_signal`` is the awaitable form of the same flag.
    """

    id: str = ""
    type: str = ""
    priority: int = 0
    attempts: int = 0
    queued: datetime | None = None
    paused: bool = False
    paused_at: datetime | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    pause_signal: PauseSignal = field(default_factory=PauseSignal, repr=False, compare=False)

    def pause(self, at: datetime) -> None:
        self.paused = True
        self.paused_at = at
        self.pause_signal.pause(at)

    def resume(self) -> None:
        self.paused = False
        self.paused_at = None
        self.pause_signal.reset()

    def summary(self) -> dict[str, Any]:
        """Core fields only; the payload stays with the runner."""
        return {
            "id": self.id,
            "type": self.type,
            "priority": self.priority,
            "attempts": self.attempts,
            "queued": isoformat(self.queued),
            "paused": self.paused,
            "paused_at": isoformat(self.paused_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, default_priority: int = 0) -> "Task":
        """Build a Task from a loose producer dict; unknown keys become payload."""
        priority = data.get("priority")
        return cls(
            id=str(data.get("id") or ""),
            type=str(data.get("type") or ""),
            priority=default_priority if priority is None else int(priority),
            attempts=int(data.get("attempts") or 0),
            queued=parse_timestamp(data.get("queued")),
            payload={k: v for k, v in data.items() if k not in _TASK_KEYS},
        )


@dataclass
class AgentState:
    """
    Per-agent scheduling state.

    Only the trigger timestamps, ``processed_tonight`` and ``timezone`` are
    durable (see ``to_record``). The queue, the in-flight task and the cycle
    counter live for the process lifetime only.

    Invariant: ``is_processing`` implies ``current_task`` is set and is not
    in ``task_queue``.
    """

    agent_id: str
    timezone: str
    good_night_time: datetime | None = None
    last_morning_greeting: datetime | None = None
    last_user_activity: datetime | None = None
    processed_tonight: dict[str, int] = field(default_factory=dict)
    task_queue: TaskQueue = field(default_factory=TaskQueue)
    current_task: Task | None = None
    is_processing: bool = False
    cycles_this_night: int = 0

    def reset_nightly_counters(self) -> None:
        """Start a fresh window: clears cycle and per-type counters."""
        self.cycles_this_night = 0
        self.processed_tonight = {}

    def to_record(self, saved_at: datetime) -> dict[str, Any]:
        """Serialize the durable subset for the state store."""
        return {
            "goodNightTime": isoformat(self.good_night_time),
            "lastUserActivity": isoformat(self.last_user_activity),
            "lastMorningGreeting": isoformat(self.last_morning_greeting),
            "processedTonight": dict(self.processed_tonight),
            "timezone": self.timezone,
            "savedAt": saved_at.isoformat(),
        }

    @classmethod
    def from_record(
        cls,
        agent_id: str,
        record: dict[str, Any],
        *,
        default_timezone: str,
        max_attempts: int = 3,
    ) -> "AgentState":
        """Rebuild state from a stored record; missing or malformed fields take defaults."""
        tz_name = record.get("timezone")
        if not isinstance(tz_name, str) or not is_valid_timezone(tz_name):
            tz_name = default_timezone

        processed: dict[str, int] = {}
        raw_processed = record.get("processedTonight")
        if isinstance(raw_processed, dict):
            for task_type, count in raw_processed.items():
                if isinstance(count, int) and not isinstance(count, bool):
                    processed[str(task_type)] = count

        return cls(
            agent_id=agent_id,
            timezone=tz_name,
            good_night_time=parse_timestamp(record.get("goodNightTime")),
            last_morning_greeting=parse_timestamp(record.get("lastMorningGreeting")),
            last_user_activity=parse_timestamp(record.get("lastUserActivity")),
            processed_tonight=processed,
            task_queue=TaskQueue(max_attempts=max_attempts),
        )


@dataclass
class RunContext:
    """Handed to every runner invocation alongside the task."""

    agent_id: str
    pause_signal: PauseSignal
    host_context: Any = None
    scheduler: "NightShiftScheduler | None" = None

    @property
    def paused(self) -> bool:
        return self.pause_signal.is_paused()
