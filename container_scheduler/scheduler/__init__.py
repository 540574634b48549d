"""
Scheduling core: cron evaluation, persistence, the firing loop and the
request-facing service. Nothing in this package knows about HTTP.
"""

from .dispatcher import ActionDispatcher, ActionResult, HttpActionDispatcher, LoggingActionDispatcher
from .errors import (
    ConcurrentClaimLost,
    DispatchFailure,
    InvalidCronExpression,
    InvalidTimezone,
    InvalidTransition,
    NotFound,
    SchedulerError,
    ValidationError,
)
from .execution_log import ExecutionLog, ExecutionPage
from .loop import ResyncSummary, SchedulerLoop
from .service import ScheduleService
from .store import NewSchedule, ScheduleStore

__all__ = [
    "ActionDispatcher",
    "ActionResult",
    "ConcurrentClaimLost",
    "DispatchFailure",
    "ExecutionLog",
    "ExecutionPage",
    "HttpActionDispatcher",
    "InvalidCronExpression",
    "InvalidTimezone",
    "InvalidTransition",
    "LoggingActionDispatcher",
    "NewSchedule",
    "NotFound",
    "ResyncSummary",
    "ScheduleService",
    "ScheduleStore",
    "SchedulerError",
    "SchedulerLoop",
    "ValidationError",
]
