"""
Schedule Schemas.

Request/response models for the schedule endpoints. Response payloads are built
from `Schedule.to_dict()` / `ScheduleExecution.to_dict()`, so timestamps are
ISO-8601 UTC strings.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...models.schedule import ScheduleAction
from ...scheduler.cron import MAX_PREVIEW
from ...scheduler.store import NewSchedule


# ============================================================================
# Requests
# ============================================================================

class ScheduleCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    container_name: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    action: ScheduleAction
    action_params: Optional[Dict[str, Any]] = None
    cron_expression: str = Field(..., min_length=1, max_length=100, examples=["0 3 * * *"])
    timezone: Optional[str] = Field(None, max_length=64, description="IANA zone; defaults to DEFAULT_TIMEZONE")
    enabled: bool = True

    def to_new_schedule(self, default_timezone: str = "UTC") -> NewSchedule:
        return NewSchedule(
            container_name=self.container_name,
            name=self.name,
            description=self.description,
            action=self.action.value,
            action_params=self.action_params,
            cron_expression=self.cron_expression,
            timezone=self.timezone or default_timezone,
            enabled=self.enabled,
        )


class ScheduleUpdateRequest(BaseModel):
    """Partial update: only the fields present in the body are applied."""
    model_config = ConfigDict(extra="forbid")

    container_name: Optional[str] = Field(None, max_length=255)
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    action: Optional[ScheduleAction] = None
    action_params: Optional[Dict[str, Any]] = None
    cron_expression: Optional[str] = Field(None, max_length=100)
    timezone: Optional[str] = Field(None, max_length=64)
    enabled: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        if data.get("action") is not None:
            data["action"] = ScheduleAction(data["action"]).value
        return data


class ToggleRequest(BaseModel):
    enabled: bool


class ValidateCronRequest(BaseModel):
    cron_expression: str


class CronPreviewRequest(BaseModel):
    cron_expression: str
    timezone: Optional[str] = None
    count: int = Field(5, ge=1, le=MAX_PREVIEW)


# ============================================================================
# Responses
# ============================================================================

class SchedulePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    container_name: str
    name: str
    description: Optional[str] = None
    action: str
    action_params: Dict[str, Any] = Field(default_factory=dict)
    cron_expression: str
    cron_description: str
    timezone: str
    enabled: bool
    status: str
    last_run_at: Optional[str] = None
    last_run_status: Optional[str] = None
    last_run_error: Optional[str] = None
    next_run_at: Optional[str] = None
    run_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ScheduleListResponse(BaseModel):
    schedules: List[SchedulePayload]
    total: int


class ExecutionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    schedule_id: str
    schedule_name: str
    container_name: str
    action: str
    trigger_type: str
    status: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_seconds: Optional[float] = None
    output: Optional[str] = None
    error: Optional[str] = None


class ExecutionHistoryResponse(BaseModel):
    schedule_id: str
    executions: List[ExecutionPayload]
    total: int
    next_cursor: Optional[str] = None


class TriggerResponse(BaseModel):
    success: bool
    message: str
    execution: ExecutionPayload


class ValidateCronResponse(BaseModel):
    valid: bool
    message: Optional[str] = None
    error: Optional[str] = None
    description: Optional[str] = None


class CronPreviewResponse(BaseModel):
    cron_expression: str
    timezone: str
    description: str
    count: int
    next_runs: List[str]
