import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, Float, Index, String, Text, text

from .base import Base
from ..utils.time import ensure_utc, iso_utc


class ExecutionStatus(str, Enum):
    """Execution status enumeration."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class TriggerType(str, Enum):
    """Trigger type enumeration."""
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class ScheduleExecution(Base):
    """
    ScheduleExecution model: one fire attempt of a schedule.

    Rows are created `running` and completed exactly once. `schedule_id` is a
    plain indexed column rather than a foreign key so history survives deletion
    of the schedule.
    """
    __tablename__ = 'schedule_executions'
    __table_args__ = (
        # At most one running execution per schedule; this is the claim guard.
        Index(
            'uq_schedule_executions_running',
            'schedule_id',
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'"),
        ).ddl_if(dialect=("sqlite", "postgresql")),
        Index('ix_schedule_executions_schedule_started', 'schedule_id', 'started_at'),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    schedule_id = Column(String(36), nullable=False, index=True)

    # Denormalized so history stays readable after the schedule is gone
    schedule_name = Column(String(255), nullable=False)
    container_name = Column(String(255), nullable=False)
    action = Column(String(20), nullable=False)

    trigger_type = Column(String(20), nullable=False)  # scheduled, manual
    status = Column(String(20), nullable=False)  # running, success, failed
    started_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    output = Column(Text, nullable=True)
    error = Column(Text, nullable=True)

    def __repr__(self):
        return f'<ScheduleExecution {self.id} - Schedule:{self.schedule_id} - Status:{self.status}>'

    @property
    def is_running(self) -> bool:
        return self.status == ExecutionStatus.RUNNING.value

    def to_dict(self):
        """Convert execution object to dictionary."""
        return {
            'id': self.id,
            'schedule_id': self.schedule_id,
            'schedule_name': self.schedule_name,
            'container_name': self.container_name,
            'action': self.action,
            'trigger_type': self.trigger_type,
            'status': self.status,
            'started_at': iso_utc(self.started_at),
            'completed_at': iso_utc(self.completed_at),
            'duration_seconds': self.duration_seconds,
            'output': self.output,
            'error': self.error,
        }

    def mark_completed(self, status, output=None, error=None, completed_at=None):
        """
        Mark execution as completed and calculate duration.

        Args:
            status (str): Final status (success or failed)
            output (str): Text returned by the action dispatcher
            error (str): Error message if failed
            completed_at (datetime): Completion instant, defaults to now
        """
        self.completed_at = ensure_utc(completed_at) or datetime.now(timezone.utc)
        self.status = status
        self.output = output
        self.error = error

        started_at = ensure_utc(self.started_at)
        if started_at and self.completed_at:
            duration = self.completed_at - started_at
            self.duration_seconds = max(duration.total_seconds(), 0.0)
