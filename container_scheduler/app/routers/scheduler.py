"""
Scheduler operational endpoints.

These endpoints are for operators to verify scheduler state and trigger a
store -> queue resync when needed.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from ..schemas import SchedulerResyncResponse, SchedulerStatusResponse
from ..scheduler_reconcile import get_last_resync, reconcile_once
from ..scheduler_runtime import get_status

router = APIRouter(prefix="/scheduler", tags=["Scheduler"])


@router.get(
    "/status",
    summary="Scheduler status",
    description="Return scheduler leadership and queued schedule counts (leader-only firing).",
    response_model=SchedulerStatusResponse,
)
def scheduler_status() -> SchedulerStatusResponse:
    sched = get_status()
    last_resync_at, _ = get_last_resync()
    return SchedulerStatusResponse(
        scheduler_running=sched.running,
        scheduler_is_leader=sched.is_leader,
        scheduled_jobs_count=sched.scheduled_jobs_count,
        last_resync_at=last_resync_at,
    )


@router.post(
    "/resync",
    summary="Resync scheduler from DB",
    description="Rebuild the firing queue from the schedules table. Leader only.",
    response_model=SchedulerResyncResponse,
)
def scheduler_resync() -> SchedulerResyncResponse:
    sched = get_status()
    if not (sched.running and sched.is_leader):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Scheduler is not running as leader in this process.",
        )

    summary = reconcile_once()
    resync = summary.resync
    return SchedulerResyncResponse(
        message="Scheduler resync completed",
        ran_at=resync.ran_at,
        schedules_total=resync.schedules_total,
        schedules_active=resync.schedules_active,
        scheduled_now=resync.scheduled_now,
        scheduled_added=resync.scheduled_added,
        scheduled_removed=resync.scheduled_removed,
        orphaned_removed=resync.orphaned_removed,
        stale_executions_failed=summary.stale_executions_failed,
    )
