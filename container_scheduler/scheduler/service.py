"""
Request-facing façade over the store, the execution log and the loop.

Every mutation is persisted first and then mirrored into the loop's queue. When
the loop is not running in this process (not the leader) the queue update is a
no-op and the leader's reconciler picks the change up.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import cron
from .errors import NotFound
from .execution_log import ExecutionPage
from .loop import SchedulerLoop
from .store import NewSchedule
from ..models.schedule import Schedule
from ..models.schedule_execution import ScheduleExecution
from ..utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class ScheduleService:
    def __init__(self, loop: SchedulerLoop):
        self.loop = loop
        self.store = loop.store
        self.log = loop.log

    def _sync(self, schedule: Schedule) -> Schedule:
        try:
            self.loop.enqueue(schedule)
        except Exception as exc:
            # Persisted already; the reconciler will converge the queue.
            logger.warning("Scheduler side-effect failed for schedule %s: %s", schedule.id, exc)
        return schedule

    def create_schedule(self, data: NewSchedule) -> Schedule:
        return self._sync(self.store.create(data))

    def update_schedule(self, schedule_id: str, changes: Dict[str, Any]) -> Schedule:
        return self._sync(self.store.update(schedule_id, changes))

    def delete_schedule(self, schedule_id: str) -> Schedule:
        schedule = self.store.delete(schedule_id)
        self.loop.dequeue(schedule_id)
        return schedule

    def toggle(self, schedule_id: str, enabled: bool) -> Schedule:
        schedule = self.store.update(schedule_id, {"enabled": bool(enabled)})
        logger.info("Schedule %s %s", schedule_id, "enabled" if enabled else "paused")
        return self._sync(schedule)

    def trigger(self, schedule_id: str) -> ScheduleExecution:
        return self.loop.trigger(schedule_id)

    def mark_completed(self, schedule_id: str) -> Schedule:
        schedule = self.store.mark_completed(schedule_id)
        self.loop.dequeue(schedule_id)
        return schedule

    def get_schedule(self, schedule_id: str) -> Schedule:
        return self.store.get(schedule_id)

    def list_schedules(
        self,
        container_name: Optional[str] = None,
        status: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> List[Schedule]:
        return self.store.list(container_name=container_name, status=status, enabled=enabled)

    def list_executions(
        self,
        schedule_id: str,
        limit: int = 50,
        cursor: Optional[str] = None,
        status: Optional[str] = None,
        trigger_type: Optional[str] = None,
    ) -> ExecutionPage:
        # No existence check: history outlives its schedule.
        return self.log.list_by_criteria(
            schedule_id=schedule_id,
            status=status,
            trigger_type=trigger_type,
            limit=limit,
            cursor=cursor,
        )

    def get_execution(self, schedule_id: str, execution_id: str) -> ScheduleExecution:
        execution = self.log.get(execution_id)
        if execution.schedule_id != schedule_id:
            raise NotFound("Execution", execution_id)
        return execution

    @staticmethod
    def validate_cron(cron_expr: str) -> Optional[str]:
        """Return None when valid, else the reason it is not."""
        return cron.validation_error(cron_expr)

    @staticmethod
    def preview_cron(
        cron_expr: str,
        tz_name: str = "UTC",
        count: int = 5,
        after: Optional[datetime] = None,
    ) -> List[datetime]:
        after = ensure_utc(after) or utcnow()
        return cron.next_fire_times(cron_expr, tz_name, after, count)
