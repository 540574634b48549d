"""
Scheduler Runtime.

Owns the per-process `SchedulerLoop` and starts/stops its firing side under the
FastAPI lifespan, guarded by a single-runner lock. Every process gets a loop
(manual triggers run inline in whichever worker serves the request); only the
lock holder starts APScheduler and the reconciler.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from urllib.parse import urlparse

from ..config import Settings, get_settings
from ..scheduler.dispatcher import ActionDispatcher, build_dispatcher
from ..scheduler.execution_log import ExecutionLog
from ..scheduler.lock import SchedulerLock
from ..scheduler.loop import SchedulerLoop
from ..scheduler.service import ScheduleService
from ..scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulerStatus:
    running: bool
    is_leader: bool
    scheduled_jobs_count: int


_loop: Optional[SchedulerLoop] = None
_lock: Optional[SchedulerLock] = None
_is_leader: bool = False


def _default_lock_path(settings: Settings) -> str:
    """
    Default lock location:
    - For sqlite:///path/to/db.sqlite -> /path/to/scheduler.lock
    - Otherwise -> ./scheduler.lock
    """
    parsed = urlparse(settings.database_url or os.getenv("DATABASE_URL", ""))
    if parsed.scheme.startswith("sqlite") and parsed.path and parsed.path != "/:memory:":
        return os.path.join(os.path.dirname(parsed.path), "scheduler.lock")
    return os.path.abspath("scheduler.lock")


def build_loop(
    settings: Optional[Settings] = None,
    dispatcher: Optional[ActionDispatcher] = None,
) -> SchedulerLoop:
    settings = settings or get_settings()
    return SchedulerLoop(
        ScheduleStore(),
        ExecutionLog(),
        dispatcher or build_dispatcher(settings),
        max_workers=settings.scheduler_max_workers,
        dispatch_timeout=settings.scheduler_dispatch_timeout_seconds,
        max_consecutive_failures=settings.scheduler_max_consecutive_failures,
    )


def get_loop() -> SchedulerLoop:
    global _loop
    if _loop is None:
        _loop = build_loop()
    return _loop


def set_loop(loop: Optional[SchedulerLoop]) -> None:
    """Replace the process loop (e.g. to inject a dispatcher)."""
    global _loop
    if _loop is not None and _loop is not loop:
        _loop.stop()
    _loop = loop


def get_service() -> ScheduleService:
    return ScheduleService(get_loop())


def stale_execution_bound(settings: Optional[Settings] = None) -> timedelta:
    """Running executions older than this can no longer be in flight."""
    settings = settings or get_settings()
    return timedelta(seconds=settings.scheduler_dispatch_timeout_seconds + settings.poll_seconds)


def start_scheduler() -> bool:
    """
    Attempt to start the firing loop in this process.
    Returns True if running in this process (leader), else False.
    """
    global _lock, _is_leader

    loop = get_loop()
    if loop.running:
        _is_leader = True
        return True

    settings = get_settings()
    if settings.testing or not settings.scheduler_enabled:
        _is_leader = False
        return False

    lock = SchedulerLock(
        lock_path=settings.scheduler_lock_path or _default_lock_path(settings),
        stale_after_seconds=settings.scheduler_lock_stale_seconds or None,
    )
    if not lock.try_acquire():
        logger.info("Scheduler lock held by another process; serving API only")
        _is_leader = False
        return False

    _lock = lock
    _is_leader = True
    loop.start()
    logger.info("Scheduler leader elected (lock: %s)", lock.lock_path)

    try:
        from .scheduler_reconcile import reconcile_once, start_reconciler

        reconcile_once()
        start_reconciler()
    except Exception as exc:
        # Never fail startup; the reconciler retries and status reflects the queue.
        logger.warning("Initial scheduler resync failed: %s", exc)
    return True


def heartbeat() -> bool:
    """Refresh the leader lock; demote this process if it was taken over."""
    global _is_leader
    if _lock is None:
        return False
    if _lock.heartbeat():
        return True
    logger.warning("Scheduler lock lost; stopping the firing loop in this process")
    _is_leader = False
    if _loop is not None:
        _loop.stop()
    return False


def stop_scheduler() -> None:
    """Stop scheduler if running and release leadership lock if held."""
    global _lock, _is_leader

    from .scheduler_reconcile import stop_reconciler

    stop_reconciler()

    try:
        if _loop is not None:
            _loop.stop()
    finally:
        if _lock is not None:
            _lock.release()
        _lock = None
        _is_leader = False


def get_status() -> SchedulerStatus:
    loop = _loop
    running = bool(loop is not None and loop.running)
    return SchedulerStatus(
        running=running,
        is_leader=_is_leader and running,
        scheduled_jobs_count=loop.scheduled_count() if running else 0,
    )


def _reset_for_tests() -> None:
    """Test helper to reset global state. Not part of public API."""
    global _loop, _lock, _is_leader
    if _loop is not None:
        _loop.stop()
    if _lock is not None:
        _lock.release()
    _loop = None
    _lock = None
    _is_leader = False
