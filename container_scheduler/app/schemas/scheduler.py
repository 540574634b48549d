"""
Scheduler Schemas.

Response models for scheduler operational endpoints.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SchedulerStatusResponse(BaseModel):
    scheduler_running: bool
    scheduler_is_leader: bool
    scheduled_jobs_count: int
    last_resync_at: Optional[datetime] = None


class SchedulerResyncResponse(BaseModel):
    message: str
    ran_at: datetime
    schedules_total: int
    schedules_active: int
    scheduled_now: int
    scheduled_added: int
    scheduled_removed: int
    orphaned_removed: int
    stale_executions_failed: int = 0
