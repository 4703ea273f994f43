"""
API-layer Pydantic models for request/response serialization.
"""

from typing import Any

from pydantic import BaseModel, Field


# ── NightShift State ────────────────────────────────────────────────────


class CurrentTaskResponse(BaseModel):
    id: str
    type: str
    priority: int = 0
    attempts: int = 0
    queued: str | None = None
    paused: bool = False
    paused_at: str | None = None


class AgentStateResponse(BaseModel):
    agent_id: str
    is_in_office_hours: bool
    is_user_active: bool
    is_processing: bool
    current_task: CurrentTaskResponse | None = None
    queued_tasks: int = 0
    cycles_this_night: int = 0
    processed_tonight: dict[str, int] = Field(default_factory=dict)
    good_night_time: str | None = None
    last_morning_greeting: str | None = None
    last_user_activity: str | None = None
    timezone: str


# ── NightShift Requests ─────────────────────────────────────────────────


class QueueTaskRequest(BaseModel):
    agent_id: str | None = None
    task: dict[str, Any] = Field(default_factory=dict)


class QueueTaskResponse(BaseModel):
    task_id: str
    queued: bool = True


class SetTimezoneRequest(BaseModel):
    agent_id: str | None = None
    timezone: str | None = None


class SetTimezoneResponse(BaseModel):
    timezone: str
