"""
Schedule persistence.

`ScheduleStore` owns every read and write of the `schedules` table. Each public
method runs in its own transaction, so reads and writes are linearizable per
schedule id; `list()` is a snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, ContextManager, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from . import cron
from .errors import InvalidTransition, NotFound, ValidationError
from ..database.session import get_db_session
from ..models.schedule import RunStatus, Schedule, ScheduleAction, ScheduleStatus
from ..utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Fields a client may change; everything else is owned by the scheduler.
USER_FIELDS = frozenset(
    {
        "container_name",
        "name",
        "description",
        "action",
        "action_params",
        "cron_expression",
        "timezone",
        "enabled",
    }
)
TIMING_FIELDS = frozenset({"cron_expression", "timezone", "enabled"})


@dataclass(frozen=True)
class NewSchedule:
    container_name: str
    name: str
    action: str
    cron_expression: str
    timezone: str = "UTC"
    enabled: bool = True
    description: Optional[str] = None
    action_params: Optional[Dict[str, Any]] = field(default=None)


def _clean_text(value: Optional[str], field_name: str, required: bool = True) -> Optional[str]:
    cleaned = (value or "").strip() if isinstance(value, str) or value is None else None
    if cleaned is None:
        raise ValidationError(f'"{field_name}" must be a string')
    if required and not cleaned:
        raise ValidationError(f'"{field_name}" is required')
    return cleaned or None


def _clean_action(value) -> str:
    try:
        return ScheduleAction(value).value
    except ValueError:
        allowed = ", ".join(a.value for a in ScheduleAction)
        raise ValidationError(f'Unknown action "{value}". Expected one of: {allowed}') from None


def _clean_params(value) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError('"action_params" must be an object')
    return value


def _clean_timezone(value: Optional[str]) -> str:
    tz_name = (value or "").strip() or "UTC"
    cron.get_zone(tz_name)
    return tz_name


def _clean_cron(value: Optional[str]) -> str:
    expression = " ".join((value or "").split())
    cron.validate(expression)
    return expression


class ScheduleStore:
    """Durable `Schedule` records keyed by id."""

    def __init__(
        self,
        session_scope: Callable[[], ContextManager[Session]] = get_db_session,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_scope = session_scope
        self._clock = clock

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) or self._clock()

    @staticmethod
    def _load(session: Session, schedule_id: str) -> Schedule:
        schedule = session.get(Schedule, schedule_id)
        if schedule is None:
            raise NotFound("Schedule", schedule_id)
        return schedule

    @staticmethod
    def _apply_timing(schedule: Schedule, now: datetime, reactivate: bool) -> None:
        """Re-derive status and next_run_at from enabled/cron/timezone."""
        if not schedule.enabled:
            schedule.status = ScheduleStatus.PAUSED.value
            schedule.next_run_at = None
            return

        if reactivate or schedule.status == ScheduleStatus.PAUSED.value:
            schedule.status = ScheduleStatus.ACTIVE.value

        if schedule.status == ScheduleStatus.ACTIVE.value:
            schedule.next_run_at = cron.next_fire_after(schedule.cron_expression, schedule.timezone, now)
        else:
            # completed / failed are terminal until re-enabled
            schedule.next_run_at = None

    # ------------------------------------------------------------------
    # Client-facing CRUD
    # ------------------------------------------------------------------

    def create(self, data: NewSchedule, now: Optional[datetime] = None) -> Schedule:
        now = self._now(now)

        schedule = Schedule(
            container_name=_clean_text(data.container_name, "container_name"),
            name=_clean_text(data.name, "name"),
            description=_clean_text(data.description, "description", required=False),
            action=_clean_action(data.action),
            cron_expression=_clean_cron(data.cron_expression),
            timezone=_clean_timezone(data.timezone),
            enabled=bool(data.enabled),
            status=ScheduleStatus.ACTIVE.value,
            run_count=0,
            created_at=now,
            updated_at=now,
        )
        schedule.set_action_params(_clean_params(data.action_params))
        self._apply_timing(schedule, now, reactivate=True)

        with self._session_scope() as session:
            session.add(schedule)

        logger.info(
            "Created schedule '%s' (ID: %s) %s on %s [%s %s]",
            schedule.name,
            schedule.id,
            schedule.action,
            schedule.container_name,
            schedule.cron_expression,
            schedule.timezone,
        )
        return schedule

    def update(self, schedule_id: str, changes: Dict[str, Any], now: Optional[datetime] = None) -> Schedule:
        unknown = set(changes) - USER_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        cleaned: Dict[str, Any] = {}
        for key, value in changes.items():
            if key in ("container_name", "name"):
                cleaned[key] = _clean_text(value, key)
            elif key == "description":
                cleaned[key] = _clean_text(value, key, required=False)
            elif key == "action":
                cleaned[key] = _clean_action(value)
            elif key == "action_params":
                cleaned[key] = _clean_params(value)
            elif key == "cron_expression":
                cleaned[key] = _clean_cron(value)
            elif key == "timezone":
                cleaned[key] = _clean_timezone(value)
            elif key == "enabled":
                if not isinstance(value, bool):
                    raise ValidationError('"enabled" must be a boolean')
                cleaned[key] = value

        now = self._now(now)
        with self._session_scope() as session:
            schedule = self._load(session, schedule_id)

            timing_changed = False
            for key, value in cleaned.items():
                if key == "action_params":
                    schedule.set_action_params(value)
                    continue
                if key in TIMING_FIELDS and getattr(schedule, key) != value:
                    timing_changed = True
                setattr(schedule, key, value)

            # Writing "enabled" (even unchanged) re-arms a terminal schedule.
            reactivate = bool(cleaned.get("enabled"))
            if timing_changed or reactivate:
                self._apply_timing(schedule, now, reactivate=reactivate)
            schedule.updated_at = now

        logger.info("Updated schedule %s fields=%s", schedule_id, sorted(cleaned))
        return schedule

    def delete(self, schedule_id: str) -> Schedule:
        with self._session_scope() as session:
            schedule = self._load(session, schedule_id)
            session.delete(schedule)
        logger.info("Deleted schedule '%s' (ID: %s)", schedule.name, schedule_id)
        return schedule

    def get(self, schedule_id: str) -> Schedule:
        with self._session_scope() as session:
            return self._load(session, schedule_id)

    def find(self, schedule_id: str) -> Optional[Schedule]:
        with self._session_scope() as session:
            return session.get(Schedule, schedule_id)

    def list(
        self,
        container_name: Optional[str] = None,
        status: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> List[Schedule]:
        query = select(Schedule)
        if container_name:
            query = query.where(Schedule.container_name == container_name)
        if status:
            query = query.where(Schedule.status == status)
        if enabled is not None:
            query = query.where(Schedule.enabled.is_(enabled))
        query = query.order_by(Schedule.created_at.asc(), Schedule.id.asc())

        with self._session_scope() as session:
            return list(session.execute(query).scalars().all())

    def list_due(self, now: Optional[datetime] = None) -> List[Schedule]:
        now = self._now(now)
        query = (
            select(Schedule)
            .where(Schedule.enabled.is_(True))
            .where(Schedule.status == ScheduleStatus.ACTIVE.value)
            .where(Schedule.next_run_at.is_not(None))
            .where(Schedule.next_run_at <= now)
            .order_by(Schedule.next_run_at.asc())
        )
        with self._session_scope() as session:
            return list(session.execute(query).scalars().all())

    # ------------------------------------------------------------------
    # Scheduler-owned writes
    # ------------------------------------------------------------------

    def advance_if_due(self, schedule_id: str, expected_run_at: datetime, now: Optional[datetime] = None) -> bool:
        """
        Compare-and-set claim for a cron fire.

        Moves `next_run_at` past `now` only if the schedule is still runnable and
        still due at `expected_run_at`. Returns False when another fire got there
        first, or the schedule was disabled, deleted or rescheduled meanwhile.
        """
        now = self._now(now)
        expected = ensure_utc(expected_run_at)

        with self._session_scope() as session:
            schedule = session.get(Schedule, schedule_id)
            if schedule is None or not schedule.is_runnable:
                return False
            next_run_at = cron.next_fire_after(schedule.cron_expression, schedule.timezone, now)
            result = session.execute(
                update(Schedule)
                .where(Schedule.id == schedule_id)
                .where(Schedule.enabled.is_(True))
                .where(Schedule.status == ScheduleStatus.ACTIVE.value)
                .where(Schedule.next_run_at == expected)
                .values(next_run_at=next_run_at)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def record_run(
        self,
        schedule_id: str,
        status: RunStatus,
        error: Optional[str],
        finished_at: Optional[datetime] = None,
        reschedule: bool = True,
    ) -> Optional[Schedule]:
        """
        Record a completed fire on the schedule.

        Returns the updated schedule, or None if it was deleted mid-flight.
        With `reschedule`, next_run_at is recomputed from `finished_at` for
        runnable schedules; manual runs pass False to keep the cron cadence.
        """
        finished_at = self._now(finished_at)
        with self._session_scope() as session:
            schedule = session.get(Schedule, schedule_id)
            if schedule is None:
                return None

            schedule.run_count = Schedule.run_count + 1
            schedule.last_run_at = finished_at
            schedule.last_run_status = RunStatus(status).value
            schedule.last_run_error = error if status == RunStatus.FAILED else None

            if not schedule.is_runnable:
                schedule.next_run_at = None
            elif reschedule or schedule.next_run_at is None:
                schedule.next_run_at = cron.next_fire_after(
                    schedule.cron_expression, schedule.timezone, finished_at
                )
            schedule.updated_at = finished_at
            session.flush()
            session.refresh(schedule)
            return schedule

    def mark_completed(self, schedule_id: str, now: Optional[datetime] = None) -> Schedule:
        """Move a schedule to the terminal `completed` state."""
        now = self._now(now)
        with self._session_scope() as session:
            schedule = self._load(session, schedule_id)
            if schedule.status == ScheduleStatus.COMPLETED.value:
                raise InvalidTransition(f"Schedule {schedule_id} is already completed")
            # paused must keep meaning disabled, so a terminal schedule stays enabled
            schedule.enabled = True
            schedule.status = ScheduleStatus.COMPLETED.value
            schedule.next_run_at = None
            schedule.updated_at = now
        logger.info("Schedule %s marked completed", schedule_id)
        return schedule

    def mark_failed(self, schedule_id: str, reason: str, now: Optional[datetime] = None) -> Optional[Schedule]:
        now = self._now(now)
        with self._session_scope() as session:
            schedule = session.get(Schedule, schedule_id)
            if schedule is None or not schedule.is_runnable:
                return schedule
            schedule.status = ScheduleStatus.FAILED.value
            schedule.next_run_at = None
            schedule.updated_at = now
        logger.warning("Schedule %s demoted to failed: %s", schedule_id, reason)
        return schedule
