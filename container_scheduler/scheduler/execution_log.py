"""
Append-only execution history.

Every fire attempt becomes one `ScheduleExecution` row: appended `running`
when the fire is claimed, then completed exactly once.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, ContextManager, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import ConcurrentClaimLost, InvalidTransition, NotFound, ValidationError
from ..database.session import get_db_session
from ..models.schedule import Schedule
from ..models.schedule_execution import ExecutionStatus, ScheduleExecution, TriggerType
from ..utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class ExecutionPage:
    items: List[ScheduleExecution]
    total: int
    next_cursor: Optional[str]


def encode_cursor(execution: ScheduleExecution) -> str:
    raw = f"{ensure_utc(execution.started_at).isoformat()}|{execution.id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str):
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        started_raw, execution_id = raw.split("|", 1)
        return ensure_utc(datetime.fromisoformat(started_raw)), execution_id
    except (ValueError, UnicodeError):
        raise ValidationError(f"Invalid cursor: {cursor}") from None


class ExecutionLog:
    """Store for `ScheduleExecution` rows."""

    def __init__(
        self,
        session_scope: Callable[[], ContextManager[Session]] = get_db_session,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_scope = session_scope
        self._clock = clock

    def append(
        self,
        schedule: Schedule,
        trigger_type: TriggerType,
        started_at: Optional[datetime] = None,
    ) -> ScheduleExecution:
        """
        Record a new `running` execution for `schedule`.

        Raises:
            ConcurrentClaimLost: the schedule already has a running execution.
        """
        execution = ScheduleExecution(
            schedule_id=schedule.id,
            schedule_name=schedule.name,
            container_name=schedule.container_name,
            action=schedule.action,
            trigger_type=TriggerType(trigger_type).value,
            status=ExecutionStatus.RUNNING.value,
            started_at=ensure_utc(started_at) or self._clock(),
        )
        try:
            with self._session_scope() as session:
                session.add(execution)
        except IntegrityError:
            raise ConcurrentClaimLost(schedule.id) from None
        return execution

    def complete(
        self,
        execution_id: str,
        status: ExecutionStatus,
        output: Optional[str] = None,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> ScheduleExecution:
        status = ExecutionStatus(status)
        if status == ExecutionStatus.RUNNING:
            raise InvalidTransition("An execution cannot be completed as running")

        with self._session_scope() as session:
            execution = session.get(ScheduleExecution, execution_id)
            if execution is None:
                raise NotFound("Execution", execution_id)
            if not execution.is_running:
                raise InvalidTransition(
                    f"Execution {execution_id} is already {execution.status}"
                )
            execution.mark_completed(
                status.value,
                output=output,
                error=error,
                completed_at=completed_at or self._clock(),
            )
        return execution

    def get(self, execution_id: str) -> ScheduleExecution:
        with self._session_scope() as session:
            execution = session.get(ScheduleExecution, execution_id)
            if execution is None:
                raise NotFound("Execution", execution_id)
            return execution

    def list_by_criteria(
        self,
        schedule_id: Optional[str] = None,
        status: Optional[str] = None,
        trigger_type: Optional[str] = None,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> ExecutionPage:
        """Newest-first page of executions, keyset-paginated on (started_at, id)."""
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))

        filters = []
        if schedule_id:
            filters.append(ScheduleExecution.schedule_id == schedule_id)
        if status:
            filters.append(ScheduleExecution.status == status)
        if trigger_type:
            filters.append(ScheduleExecution.trigger_type == trigger_type)

        page_query = select(ScheduleExecution).where(*filters)
        if cursor:
            started_at, execution_id = decode_cursor(cursor)
            page_query = page_query.where(
                or_(
                    ScheduleExecution.started_at < started_at,
                    and_(
                        ScheduleExecution.started_at == started_at,
                        ScheduleExecution.id < execution_id,
                    ),
                )
            )
        page_query = page_query.order_by(
            ScheduleExecution.started_at.desc(), ScheduleExecution.id.desc()
        ).limit(limit + 1)

        count_query = select(func.count()).select_from(ScheduleExecution).where(*filters)

        with self._session_scope() as session:
            rows = list(session.execute(page_query).scalars().all())
            total = session.execute(count_query).scalar_one()

        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_cursor = encode_cursor(rows[-1])
        return ExecutionPage(items=rows, total=total, next_cursor=next_cursor)

    def running_for(self, schedule_id: str) -> Optional[ScheduleExecution]:
        query = (
            select(ScheduleExecution)
            .where(ScheduleExecution.schedule_id == schedule_id)
            .where(ScheduleExecution.status == ExecutionStatus.RUNNING.value)
        )
        with self._session_scope() as session:
            return session.execute(query).scalars().first()

    def consecutive_failures(self, schedule_id: str, window: int) -> int:
        """Count failed executions at the head of the schedule's history."""
        query = (
            select(ScheduleExecution.status)
            .where(ScheduleExecution.schedule_id == schedule_id)
            .where(ScheduleExecution.status != ExecutionStatus.RUNNING.value)
            .order_by(ScheduleExecution.started_at.desc(), ScheduleExecution.id.desc())
            .limit(max(1, window))
        )
        with self._session_scope() as session:
            statuses = session.execute(query).scalars().all()

        streak = 0
        for status in statuses:
            if status != ExecutionStatus.FAILED.value:
                break
            streak += 1
        return streak

    def fail_stale_running(self, older_than: timedelta, now: Optional[datetime] = None) -> int:
        """
        Fail `running` executions started before `now - older_than`.

        These are leftovers of a process that died mid-dispatch; until they are
        closed the schedule cannot be claimed again.
        """
        now = ensure_utc(now) or self._clock()
        cutoff = now - older_than
        query = (
            select(ScheduleExecution)
            .where(ScheduleExecution.status == ExecutionStatus.RUNNING.value)
            .where(ScheduleExecution.started_at < cutoff)
        )
        with self._session_scope() as session:
            stale = list(session.execute(query).scalars().all())
            for execution in stale:
                execution.mark_completed(
                    ExecutionStatus.FAILED.value,
                    error="Execution timed out: no completion was recorded before the stale bound",
                    completed_at=now,
                )

        if stale:
            logger.warning("Failed %s abandoned running execution(s)", len(stale))
        return len(stale)
