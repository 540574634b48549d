"""
Scheduler DB Reconciliation.

The leader runs an initial store -> queue sync plus a periodic reconciliation
loop so the queue converges even when:
- the scheduler process restarts
- writes happen on a non-leader process
- schedules pre-exist in the DB before the scheduler starts
- a previous leader died mid-dispatch and left `running` executions behind
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..config import get_settings
from ..scheduler.loop import ResyncSummary
from .scheduler_runtime import get_loop, get_status, heartbeat, stale_execution_bound

logger = logging.getLogger(__name__)

_reconcile_thread: Optional[threading.Thread] = None
_reconcile_stop: Optional[threading.Event] = None

_last_resync_at: Optional[datetime] = None
_last_summary: Optional["ReconcileSummary"] = None


@dataclass(frozen=True)
class ReconcileSummary:
    resync: ResyncSummary
    stale_executions_failed: int


def get_last_resync() -> tuple[Optional[datetime], Optional[ReconcileSummary]]:
    return _last_resync_at, _last_summary


def reconcile_once() -> ReconcileSummary:
    """
    Fail abandoned executions, then rebuild the queue from the store (leader-only).

    Safe to call repeatedly; queue writes use replace_existing.
    """
    status = get_status()
    if not (status.running and status.is_leader):
        raise RuntimeError("Scheduler is not running as leader in this process.")

    loop = get_loop()
    stale = loop.log.fail_stale_running(stale_execution_bound())
    summary = ReconcileSummary(resync=loop.resync(), stale_executions_failed=stale)

    global _last_resync_at, _last_summary
    _last_resync_at = summary.resync.ran_at
    _last_summary = summary

    logger.debug(
        "Scheduler resync: %s queued (%s added, %s removed, %s orphaned), %s stale executions failed",
        summary.resync.scheduled_now,
        summary.resync.scheduled_added,
        summary.resync.scheduled_removed,
        summary.resync.orphaned_removed,
        stale,
    )
    return summary


def start_reconciler() -> None:
    """
    Start a background reconciliation loop (leader-only).

    The loop runs in a daemon thread and stops automatically on shutdown via
    stop_reconciler().
    """
    global _reconcile_thread, _reconcile_stop

    status = get_status()
    if not (status.running and status.is_leader):
        return

    if _reconcile_thread and _reconcile_thread.is_alive():
        return

    stop_event = threading.Event()
    _reconcile_stop = stop_event

    poll_seconds = get_settings().poll_seconds

    def _loop() -> None:
        # The initial sync already ran in start_scheduler().
        while not stop_event.wait(poll_seconds):
            if not heartbeat():
                return
            try:
                reconcile_once()
            except Exception as exc:
                logger.warning("Scheduler DB reconcile loop error: %s", exc)

    _reconcile_thread = threading.Thread(target=_loop, name="scheduler-reconcile", daemon=True)
    _reconcile_thread.start()


def stop_reconciler() -> None:
    global _reconcile_thread, _reconcile_stop

    if _reconcile_stop is not None:
        _reconcile_stop.set()
    if (
        _reconcile_thread is not None
        and _reconcile_thread.is_alive()
        and _reconcile_thread is not threading.current_thread()
    ):
        _reconcile_thread.join(timeout=2)
    _reconcile_thread = None
    _reconcile_stop = None
