"""
The firing loop.

`SchedulerLoop` keeps one one-shot APScheduler job per runnable schedule, keyed
by schedule id and due at `next_run_at`. APScheduler sleeps until the earliest
job and wakes early whenever a job is added, replaced or removed, so the job
store doubles as the priority queue of due times.

A fire is claimed before anything is dispatched:
  1. compare-and-set on `next_run_at` (scheduled fires only), then
  2. an in-process guard plus the running-execution unique index.
Losing either step means another fire owns the schedule; the loop skips it.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor as DispatchPool
from concurrent.futures import TimeoutError as DispatchTimeout
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from .dispatcher import ActionDispatcher, ActionResult
from .errors import ConcurrentClaimLost, DispatchFailure, InvalidTransition
from .execution_log import ExecutionLog
from .store import ScheduleStore
from ..models.schedule import RunStatus, Schedule
from ..models.schedule_execution import ExecutionStatus, ScheduleExecution, TriggerType
from ..utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

REQUEUE_INSTANCES = 2


@dataclass(frozen=True)
class ResyncSummary:
    ran_at: datetime
    schedules_total: int
    schedules_active: int
    scheduled_now: int
    scheduled_added: int
    scheduled_removed: int
    orphaned_removed: int


class SchedulerLoop:
    def __init__(
        self,
        store: ScheduleStore,
        log: ExecutionLog,
        dispatcher: ActionDispatcher,
        *,
        max_workers: int = 20,
        dispatch_timeout: float = 300.0,
        max_consecutive_failures: int = 0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.log = log
        self.dispatcher = dispatcher
        self.max_workers = max(1, int(max_workers))
        self.dispatch_timeout = float(dispatch_timeout)
        self.max_consecutive_failures = max(0, int(max_consecutive_failures))
        self._clock = clock

        self._scheduler: Optional[BackgroundScheduler] = None
        self._dispatch_pool: Optional[DispatchPool] = None
        self._pool_lock = threading.Lock()

        self._inflight: Set[str] = set()
        self._inflight_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._scheduler is not None and self._scheduler.running)

    def start(self) -> None:
        if self.running:
            return
        self._scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(self.max_workers)},
            job_defaults={
                # Late fires still run once; the claim step drops duplicates.
                "misfire_grace_time": None,
                "coalesce": True,
                # A fire re-queues its own job id before returning; the re-queued
                # job must not be refused while the finishing instance unwinds.
                "max_instances": REQUEUE_INSTANCES,
            },
            timezone=timezone.utc,
        )
        self._scheduler.start()
        logger.info("Scheduler loop started (max_workers=%s)", self.max_workers)

    def stop(self, wait: bool = False) -> None:
        scheduler = self._scheduler
        self._scheduler = None
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=wait)
            logger.info("Scheduler loop stopped")

        with self._pool_lock:
            pool = self._dispatch_pool
            self._dispatch_pool = None
        if pool is not None:
            pool.shutdown(wait=wait)

    def scheduled_count(self) -> int:
        if not self.running:
            return 0
        return len(self._scheduler.get_jobs())

    def scheduled_ids(self) -> Set[str]:
        if not self.running:
            return set()
        return {str(job.id) for job in self._scheduler.get_jobs()}

    # ------------------------------------------------------------------
    # Queue maintenance
    # ------------------------------------------------------------------

    def enqueue(self, schedule: Schedule) -> bool:
        """
        Make the queue match `schedule`: one job at next_run_at when runnable,
        nothing otherwise. No-op when the loop is not running in this process.
        """
        if not self.running:
            return False

        run_at = schedule.next_run_at_utc
        if not schedule.is_runnable or run_at is None:
            self.dequeue(schedule.id)
            return False

        self._scheduler.add_job(
            self._on_due,
            trigger=DateTrigger(run_date=run_at, timezone=timezone.utc),
            args=[schedule.id, run_at],
            id=schedule.id,
            name=schedule.name,
            replace_existing=True,
        )
        logger.debug("Queued schedule %s for %s", schedule.id, run_at.isoformat())
        return True

    def dequeue(self, schedule_id: str) -> bool:
        if not self.running or not schedule_id:
            return False
        if self._scheduler.get_job(schedule_id) is None:
            return False
        self._scheduler.remove_job(schedule_id)
        return True

    def _requeue(self, schedule_id: str) -> None:
        if not self.running:
            return
        schedule = self.store.find(schedule_id)
        if schedule is None:
            self.dequeue(schedule_id)
        else:
            self.enqueue(schedule)

    def resync(self) -> ResyncSummary:
        """
        Rebuild the queue from the store.

        Past-due schedules are queued too; APScheduler runs them immediately.
        """
        if not self.running:
            raise RuntimeError("Scheduler loop is not running in this process.")

        schedules = self.store.list()
        before = self.scheduled_ids()

        active = 0
        added = 0
        removed = 0
        known: Set[str] = set()
        for schedule in schedules:
            known.add(schedule.id)
            if self.enqueue(schedule):
                active += 1
                if schedule.id not in before:
                    added += 1
            elif schedule.id in before:
                removed += 1

        orphaned = 0
        for job_id in before - known:
            if self.dequeue(job_id):
                orphaned += 1

        return ResyncSummary(
            ran_at=self._clock(),
            schedules_total=len(schedules),
            schedules_active=active,
            scheduled_now=self.scheduled_count(),
            scheduled_added=added,
            scheduled_removed=removed,
            orphaned_removed=orphaned,
        )

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def _on_due(self, schedule_id: str, expected_run_at: datetime) -> None:
        """APScheduler entrypoint; one failing schedule must never take down the loop."""
        try:
            self.fire(schedule_id, expected_run_at)
        except Exception as exc:
            logger.exception("Scheduler fire error for schedule %s: %s", schedule_id, exc)
            self._requeue(schedule_id)

    def run_due(self, now: Optional[datetime] = None) -> List[ScheduleExecution]:
        """Synchronously fire every schedule due at `now`."""
        now = ensure_utc(now) or self._clock()
        executions = []
        for schedule in self.store.list_due(now):
            execution = self.fire(schedule.id, schedule.next_run_at_utc, now=now)
            if execution is not None:
                executions.append(execution)
        return executions

    def fire(
        self,
        schedule_id: str,
        expected_run_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ScheduleExecution]:
        """
        Fire a scheduled occurrence.

        Returns the completed execution, or None when the fire was skipped:
        the schedule is gone, not runnable, not yet due, or claimed elsewhere.
        """
        now = ensure_utc(now) or self._clock()

        schedule = self.store.find(schedule_id)
        if schedule is None or not schedule.is_runnable:
            logger.info("Skipping fire for missing/inactive schedule %s", schedule_id)
            self.dequeue(schedule_id)
            return None

        expected = ensure_utc(expected_run_at) or schedule.next_run_at_utc
        if expected is None or expected > now:
            self.enqueue(schedule)
            return None

        if not self.store.advance_if_due(schedule_id, expected, now=now):
            logger.debug("Fire of schedule %s due at %s already claimed", schedule_id, expected.isoformat())
            return None

        try:
            with self._claim(schedule_id):
                execution = self.log.append(schedule, TriggerType.SCHEDULED, started_at=now)
                return self._run(schedule, execution, reschedule=True)
        except ConcurrentClaimLost:
            # The occurrence is skipped; next_run_at has already moved on.
            logger.debug("Schedule %s is already running; skipped fire due at %s", schedule_id, expected.isoformat())
            self._requeue(schedule_id)
            return None

    def trigger(self, schedule_id: str) -> ScheduleExecution:
        """
        Run a schedule now, synchronously, without touching its cadence.

        Raises:
            NotFound: unknown schedule.
            ConcurrentClaimLost: a fire of this schedule is already running.
        """
        schedule = self.store.get(schedule_id)
        logger.info("Manually triggering schedule '%s' (ID: %s)", schedule.name, schedule.id)
        with self._claim(schedule_id):
            execution = self.log.append(schedule, TriggerType.MANUAL)
            return self._run(schedule, execution, reschedule=False)

    @contextmanager
    def _claim(self, schedule_id: str):
        with self._inflight_lock:
            if schedule_id in self._inflight:
                raise ConcurrentClaimLost(schedule_id)
            self._inflight.add(schedule_id)
        try:
            yield
        finally:
            with self._inflight_lock:
                self._inflight.discard(schedule_id)

    def _pool(self) -> DispatchPool:
        with self._pool_lock:
            if self._dispatch_pool is None:
                self._dispatch_pool = DispatchPool(
                    max_workers=self.max_workers, thread_name_prefix="container-dispatch"
                )
            return self._dispatch_pool

    def _dispatch(self, schedule: Schedule) -> ActionResult:
        """
        Call the dispatcher with a bounded wait.

        Raises:
            DispatchFailure: the dispatcher raised or did not answer in time.
        """
        future = self._pool().submit(
            self.dispatcher.execute,
            schedule.container_name,
            schedule.action,
            schedule.get_action_params(),
        )
        try:
            return future.result(timeout=self.dispatch_timeout)
        except DispatchTimeout:
            # The worker thread cannot be interrupted; its late result is discarded.
            future.cancel()
            raise DispatchFailure(f"Action timed out after {self.dispatch_timeout:g}s") from None
        except Exception as exc:
            raise DispatchFailure(f"Dispatcher error: {exc}") from exc

    def _run(self, schedule: Schedule, execution: ScheduleExecution, reschedule: bool) -> ScheduleExecution:
        logger.info(
            "Executing schedule '%s' (ID: %s): %s on %s [%s]",
            schedule.name,
            schedule.id,
            schedule.action,
            schedule.container_name,
            execution.trigger_type,
        )

        try:
            result = self._dispatch(schedule)
        except DispatchFailure as exc:
            logger.warning("Schedule '%s' (ID: %s) dispatch failed: %s", schedule.name, schedule.id, exc.message)
            result = ActionResult(success=False, error=exc.message)

        finished_at = self._clock()
        status = ExecutionStatus.SUCCESS if result.success else ExecutionStatus.FAILED
        error = None if result.success else (result.error or "Action failed")

        try:
            execution = self.log.complete(
                execution.id, status, output=result.output, error=error, completed_at=finished_at
            )
        except InvalidTransition as exc:
            # already failed by stale-execution recovery
            logger.warning("Execution %s not completed: %s", execution.id, exc.message)

        updated = self.store.record_run(
            schedule.id,
            RunStatus(status.value),
            error,
            finished_at=finished_at,
            reschedule=reschedule,
        )
        if updated is None:
            logger.info(
                "Schedule %s was deleted while running; execution %s kept in history",
                schedule.id,
                execution.id,
            )
            self.dequeue(schedule.id)
            return execution

        if status == ExecutionStatus.FAILED:
            updated = self._apply_failure_policy(updated, finished_at)
        else:
            logger.info("Schedule '%s' (ID: %s) completed successfully", schedule.name, schedule.id)

        self.enqueue(updated)
        return execution

    def _apply_failure_policy(self, schedule: Schedule, now: datetime) -> Schedule:
        threshold = self.max_consecutive_failures
        if threshold <= 0 or not schedule.is_runnable:
            return schedule
        streak = self.log.consecutive_failures(schedule.id, threshold)
        if streak < threshold:
            return schedule
        return self.store.mark_failed(schedule.id, f"{streak} consecutive failed executions", now=now) or schedule
