from .base import Base
from .schedule import RunStatus, Schedule, ScheduleAction, ScheduleStatus
from .schedule_execution import ExecutionStatus, ScheduleExecution, TriggerType

__all__ = [
    "Base",
    "ExecutionStatus",
    "RunStatus",
    "Schedule",
    "ScheduleAction",
    "ScheduleExecution",
    "ScheduleStatus",
    "TriggerType",
]
