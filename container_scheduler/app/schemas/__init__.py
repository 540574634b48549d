from .common import (
    DeleteResponse,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    ValidationErrorItem,
    ValidationErrorResponse,
)
from .schedule import (
    CronPreviewRequest,
    CronPreviewResponse,
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
from .scheduler import SchedulerResyncResponse, SchedulerStatusResponse

__all__ = [
    "CronPreviewRequest",
    "CronPreviewResponse",
    "DeleteResponse",
    "ErrorDetail",
    "ErrorResponse",
    "ExecutionHistoryResponse",
    "ExecutionPayload",
    "HealthResponse",
    "ScheduleCreateRequest",
    "ScheduleListResponse",
    "SchedulePayload",
    "ScheduleUpdateRequest",
    "SchedulerResyncResponse",
    "SchedulerStatusResponse",
    "ToggleRequest",
    "TriggerResponse",
    "ValidateCronRequest",
    "ValidateCronResponse",
    "ValidationErrorItem",
    "ValidationErrorResponse",
]
