"""
NightShift state API router.
"""

from fastapi import APIRouter, HTTPException, Query

from nightshift.scheduler.exceptions import InvalidAgentIdError, UnknownTimezoneError

from server.dependencies import get_scheduler
from server.schemas import (
    AgentStateResponse,
    QueueTaskRequest,
    QueueTaskResponse,
    SetTimezoneRequest,
    SetTimezoneResponse,
)

router = APIRouter(prefix="/api/nightshift", tags=["nightshift"])


@router.get("/state", response_model=AgentStateResponse)
async def get_state(agent_id: str | None = Query(default=None)) -> AgentStateResponse:
    scheduler = get_scheduler()
    try:
        snapshot = await scheduler.snapshot(agent_id)
    except InvalidAgentIdError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AgentStateResponse(**snapshot)


@router.post("/tasks", response_model=QueueTaskResponse)
async def queue_task(body: QueueTaskRequest) -> QueueTaskResponse:
    scheduler = get_scheduler()
    try:
        task_id = await scheduler.queue_task(body.agent_id, body.task)
    except (InvalidAgentIdError, ValueError, TypeError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return QueueTaskResponse(task_id=task_id, queued=True)


@router.put("/timezone", response_model=SetTimezoneResponse)
async def set_timezone(body: SetTimezoneRequest) -> SetTimezoneResponse:
    scheduler = get_scheduler()
    try:
        timezone = await scheduler.set_timezone(body.agent_id, body.timezone)
    except (InvalidAgentIdError, UnknownTimezoneError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SetTimezoneResponse(timezone=timezone)
