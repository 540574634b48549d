"""
Schedules Router.

Implements:
- GET/POST /api/schedules
- GET/PUT/DELETE /api/schedules/{schedule_id}
- POST /api/schedules/{schedule_id}/toggle | /trigger | /complete
- GET /api/schedules/{schedule_id}/history[/{execution_id}]
- POST /api/schedules/validate-cron | /cron-preview

Routes are plain `def` handlers: the service is synchronous and FastAPI runs
them in its threadpool. Scheduler errors propagate to the exception handlers
registered in `main.py`.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, status

from ...config import get_settings
from ...scheduler import cron
from ..dependencies import ScheduleServiceDep
from ..schemas import (
    CronPreviewRequest,
    CronPreviewResponse,
    DeleteResponse,
    ErrorResponse,
    ExecutionHistoryResponse,
    ExecutionPayload,
    ScheduleCreateRequest,
    ScheduleListResponse,
    SchedulePayload,
    ScheduleUpdateRequest,
    ToggleRequest,
    TriggerResponse,
    ValidateCronRequest,
    ValidateCronResponse,
)
from ...utils.time import iso_utc

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/schedules",
    tags=["Schedules"],
    responses={
        400: {"description": "Validation error", "model": ErrorResponse},
        500: {"description": "Internal server error", "model": ErrorResponse},
    },
)

NOT_FOUND = {404: {"description": "Schedule not found", "model": ErrorResponse}}
CONFLICT = {409: {"description": "Conflicting state", "model": ErrorResponse}}


@router.get(
    "",
    response_model=ScheduleListResponse,
    summary="List schedules",
    description="All schedules ordered by creation time, optionally filtered by container and status.",
)
def list_schedules(
    service: ScheduleServiceDep,
    container: Optional[str] = Query(None, description="Only schedules for this container"),
    status_: Optional[str] = Query(None, alias="status", description="active|paused|completed|failed"),
    enabled: Optional[bool] = Query(None),
) -> ScheduleListResponse:
    schedules = service.list_schedules(container_name=container, status=status_, enabled=enabled)
    payload = [SchedulePayload.model_validate(s.to_dict()) for s in schedules]
    return ScheduleListResponse(schedules=payload, total=len(payload))


@router.post(
    "",
    response_model=SchedulePayload,
    status_code=status.HTTP_201_CREATED,
    summary="Create schedule",
)
def create_schedule(body: ScheduleCreateRequest, service: ScheduleServiceDep) -> SchedulePayload:
    schedule = service.create_schedule(body.to_new_schedule(get_settings().default_timezone))
    return SchedulePayload.model_validate(schedule.to_dict())


@router.post(
    "/validate-cron",
    response_model=ValidateCronResponse,
    summary="Validate a cron expression",
)
def validate_cron(body: ValidateCronRequest, service: ScheduleServiceDep) -> ValidateCronResponse:
    reason = service.validate_cron(body.cron_expression)
    if reason:
        return ValidateCronResponse(valid=False, error=reason)
    return ValidateCronResponse(
        valid=True,
        message="Valid cron expression",
        description=cron.describe(body.cron_expression),
    )


@router.post(
    "/cron-preview",
    response_model=CronPreviewResponse,
    summary="Preview upcoming fire times",
)
def cron_preview(body: CronPreviewRequest, service: ScheduleServiceDep) -> CronPreviewResponse:
    tz_name = body.timezone or get_settings().default_timezone
    runs = service.preview_cron(body.cron_expression, tz_name, body.count)
    return CronPreviewResponse(
        cron_expression=body.cron_expression,
        timezone=tz_name,
        description=cron.describe(body.cron_expression),
        count=len(runs),
        next_runs=[iso_utc(run) for run in runs],
    )


@router.get("/{schedule_id}", response_model=SchedulePayload, responses=NOT_FOUND, summary="Get schedule")
def get_schedule(schedule_id: str, service: ScheduleServiceDep) -> SchedulePayload:
    return SchedulePayload.model_validate(service.get_schedule(schedule_id).to_dict())


@router.put(
    "/{schedule_id}",
    response_model=SchedulePayload,
    responses=NOT_FOUND,
    summary="Update schedule",
    description="Partial update. Changing cron_expression, timezone or enabled recomputes next_run_at.",
)
def update_schedule(schedule_id: str, body: ScheduleUpdateRequest, service: ScheduleServiceDep) -> SchedulePayload:
    schedule = service.update_schedule(schedule_id, body.changes())
    return SchedulePayload.model_validate(schedule.to_dict())


@router.delete(
    "/{schedule_id}",
    response_model=DeleteResponse,
    responses=NOT_FOUND,
    summary="Delete schedule",
    description="Execution history is kept and stays queryable by schedule id.",
)
def delete_schedule(schedule_id: str, service: ScheduleServiceDep) -> DeleteResponse:
    schedule = service.delete_schedule(schedule_id)
    return DeleteResponse(message=f"Schedule '{schedule.name}' deleted", deleted_id=schedule_id)


@router.post("/{schedule_id}/toggle", response_model=SchedulePayload, responses=NOT_FOUND, summary="Enable or pause")
def toggle_schedule(schedule_id: str, body: ToggleRequest, service: ScheduleServiceDep) -> SchedulePayload:
    return SchedulePayload.model_validate(service.toggle(schedule_id, body.enabled).to_dict())


@router.post(
    "/{schedule_id}/trigger",
    response_model=TriggerResponse,
    responses={**NOT_FOUND, **CONFLICT},
    summary="Run now",
    description="Runs the action synchronously. next_run_at is unchanged. 409 while a run is in flight.",
)
def trigger_schedule(schedule_id: str, service: ScheduleServiceDep) -> TriggerResponse:
    execution = service.trigger(schedule_id)
    succeeded = execution.status == "success"
    return TriggerResponse(
        success=succeeded,
        message="Schedule executed successfully" if succeeded else "Schedule execution failed",
        execution=ExecutionPayload.model_validate(execution.to_dict()),
    )


@router.post(
    "/{schedule_id}/complete",
    response_model=SchedulePayload,
    responses={**NOT_FOUND, **CONFLICT},
    summary="Mark schedule completed",
    description="Terminal state; toggling the schedule on re-activates it.",
)
def complete_schedule(schedule_id: str, service: ScheduleServiceDep) -> SchedulePayload:
    return SchedulePayload.model_validate(service.mark_completed(schedule_id).to_dict())


@router.get(
    "/{schedule_id}/history",
    response_model=ExecutionHistoryResponse,
    summary="Execution history",
    description="Newest first. Pass `next_cursor` back as `cursor` for the next page.",
)
def schedule_history(
    schedule_id: str,
    service: ScheduleServiceDep,
    limit: int = Query(50, ge=1, le=200),
    cursor: Optional[str] = Query(None),
    status_: Optional[str] = Query(None, alias="status", description="running|success|failed"),
    trigger_type: Optional[str] = Query(None, description="scheduled|manual"),
) -> ExecutionHistoryResponse:
    page = service.list_executions(
        schedule_id, limit=limit, cursor=cursor, status=status_, trigger_type=trigger_type
    )
    return ExecutionHistoryResponse(
        schedule_id=schedule_id,
        executions=[ExecutionPayload.model_validate(e.to_dict()) for e in page.items],
        total=page.total,
        next_cursor=page.next_cursor,
    )


@router.get(
    "/{schedule_id}/history/{execution_id}",
    response_model=ExecutionPayload,
    responses=NOT_FOUND,
    summary="Get one execution",
)
def get_execution(schedule_id: str, execution_id: str, service: ScheduleServiceDep) -> ExecutionPayload:
    return ExecutionPayload.model_validate(service.get_execution(schedule_id, execution_id).to_dict())
