"""
Scheduler configuration schema and loader.

The scheduler core consumes a fully-resolved NightShiftConfig. This module
builds one from the built-in defaults, an optional JSON file and in-process
overrides. Nested sections merge key by key; lists and scalars replace.

Keys are accepted in either camelCase (plugin-style JSON) or snake_case:

    {
        "schedule": {"goodNightBufferMinutes": 45},
        "tasks": {"contemplation": {"maxPerNight": 2}}
    }
"""

import re
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel, to_snake

DEFAULT_TIMEZONE = "America/Los_Angeles"

_CLOCK_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_clock(value: str) -> int:
    """Parse an ``HH:MM`` clock string into minutes after midnight."""
    match = _CLOCK_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid clock time (expected HH:MM): {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def is_valid_timezone(name: str) -> bool:
    """True if ``name`` resolves to an IANA timezone."""
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class OfficeHoursConfig(_ConfigModel):
    """Clock-based fallback window. ``start > end`` wraps midnight."""

    start: str = "22:30"
    end: str = "05:00"
    timezone: str = DEFAULT_TIMEZONE

    @field_validator("start", "end")
    @classmethod
    def _check_clock(cls, value: str) -> str:
        parse_clock(value)
        return value.strip()

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        if not is_valid_timezone(value):
            raise ValueError(f"Unknown timezone: {value!r}")
        return value

    @property
    def start_minutes(self) -> int:
        return parse_clock(self.start)

    @property
    def end_minutes(self) -> int:
        return parse_clock(self.end)


class ScheduleConfig(_ConfigModel):
    default_office_hours: OfficeHoursConfig = Field(default_factory=OfficeHoursConfig)
    good_night_buffer_minutes: float = Field(default=30, ge=0)
    user_active_threshold_minutes: float = Field(default=5, ge=0)


class TriggerConfig(_ConfigModel):
    good_night_phrases: list[str] = Field(
        default_factory=lambda: [
            "good night",
            "goodnight",
            "going to bed",
            "heading to bed",
            "off to bed",
            "going offline",
        ]
    )
    morning_phrases: list[str] = Field(
        default_factory=lambda: [
            "good morning",
            "morning!",
            "i'm up",
            "i'm awake",
            "back online",
        ]
    )


class ProcessingConfig(_ConfigModel):
    max_cycles_per_night: int = Field(default=10, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    tick_interval_seconds: float = Field(default=60.0, gt=0)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)


class TaskTypeConfig(_ConfigModel):
    """Per task-type settings. ``max_per_night=None`` means uncapped."""

    enabled: bool = True
    priority: int = 0
    max_per_night: int | None = Field(default=None, ge=0)


class StateConfig(_ConfigModel):
    storage_type: Literal["json", "sqlite", "memory"] = "json"
    persist_path: str = "state.json"
    sqlite_db_path: str = "nightshift.db"


def _default_tasks() -> dict[str, TaskTypeConfig]:
    return {
        "contemplation": TaskTypeConfig(priority=50),
        "crystallization": TaskTypeConfig(priority=25),
        "metabolism": TaskTypeConfig(priority=10),
    }


class NightShiftConfig(_ConfigModel):
    """Fully-resolved scheduler configuration. Treated as immutable once loaded."""

    enabled: bool = True
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    triggers: TriggerConfig = Field(default_factory=TriggerConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    tasks: dict[str, TaskTypeConfig] = Field(default_factory=_default_tasks)
    state: StateConfig = Field(default_factory=StateConfig)

    @property
    def default_timezone(self) -> str:
        return self.schedule.default_office_hours.timezone

    def task_config(self, task_type: str) -> TaskTypeConfig | None:
        return self.tasks.get(task_type)


def deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Return ``target`` overlaid with ``source``; nested dicts merge recursively."""
    result = dict(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _normalize_keys(data: dict[str, Any], *, verbatim: bool = False) -> dict[str, Any]:
    # Task type names under "tasks" are user identifiers and keep their spelling.
    result: dict[str, Any] = {}
    for key, value in data.items():
        name = key if verbatim else to_snake(key)
        if isinstance(value, dict):
            value = _normalize_keys(value, verbatim=(name == "tasks" and not verbatim))
        result[name] = value
    return result


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> NightShiftConfig:
    """
    Build a validated NightShiftConfig.

    Args:
        path: Optional JSON file whose contents overlay the defaults.
        overrides: Optional dict applied last (e.g. host-supplied plugin config).

    Raises:
        FileNotFoundError: ``path`` was given but does not exist.
        ValueError: the file is not a JSON object.
        pydantic.ValidationError: the merged configuration is invalid.
    """
    merged = NightShiftConfig().model_dump()

    if path is not None:
        raw = orjson.loads(Path(path).expanduser().read_bytes())
        if not isinstance(raw, dict):
            raise ValueError(f"Config file must contain a JSON object: {path}")
        merged = deep_merge(merged, _normalize_keys(raw))

    if overrides:
        merged = deep_merge(merged, _normalize_keys(overrides))

    return NightShiftConfig.model_validate(merged)


__all__ = [
    "DEFAULT_TIMEZONE",
    "NightShiftConfig",
    "OfficeHoursConfig",
    "ProcessingConfig",
    "ScheduleConfig",
    "StateConfig",
    "TaskTypeConfig",
    "TriggerConfig",
    "deep_merge",
    "is_valid_timezone",
    "load_config",
    "parse_clock",
]
