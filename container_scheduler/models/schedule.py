import json
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from .base import Base
from ..utils.time import ensure_utc, iso_utc


class ScheduleAction(str, Enum):
    """Container lifecycle actions a schedule can fire."""
    RESTART = "restart"
    REBUILD = "rebuild"
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"
    SNAPSHOT = "snapshot"
    SIGNAL = "signal"


class ScheduleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class Schedule(Base):
    """
    Schedule model: a cron-driven automation rule for one container.

    `status`, `next_run_at`, `last_run_*` and `run_count` are maintained by the
    scheduler; clients only edit the descriptive fields, the cron/timezone pair
    and `enabled`.
    """
    __tablename__ = 'schedules'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    container_name = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    action = Column(String(20), nullable=False)
    # Opaque JSON, interpreted only by the action dispatcher
    action_params = Column(Text, nullable=True)

    cron_expression = Column(String(100), nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")

    enabled = Column(Boolean, default=True, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ScheduleStatus.ACTIVE.value)

    last_run_at = Column(DateTime(timezone=True), nullable=True)
    last_run_status = Column(String(20), nullable=True)
    last_run_error = Column(Text, nullable=True)
    next_run_at = Column(DateTime(timezone=True), nullable=True, index=True)
    run_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def get_action_params(self) -> dict:
        """
        Parse and return action params as dictionary.
        """
        if self.action_params:
            try:
                value = json.loads(self.action_params)
            except json.JSONDecodeError:
                return {}
            return value if isinstance(value, dict) else {}
        return {}

    def set_action_params(self, params) -> None:
        """
        Store action params dictionary as JSON string.
        """
        if params:
            self.action_params = json.dumps(params)
        else:
            self.action_params = None

    @property
    def is_runnable(self) -> bool:
        return bool(self.enabled) and self.status == ScheduleStatus.ACTIVE.value

    @property
    def next_run_at_utc(self):
        return ensure_utc(self.next_run_at)

    def to_dict(self):
        """
        Convert Schedule object to dictionary for JSON serialization.
        """
        from ..scheduler.cron import describe

        return {
            'id': self.id,
            'container_name': self.container_name,
            'name': self.name,
            'description': self.description,
            'action': self.action,
            'action_params': self.get_action_params(),
            'cron_expression': self.cron_expression,
            'cron_description': describe(self.cron_expression),
            'timezone': self.timezone,
            'enabled': bool(self.enabled),
            'status': self.status,
            'last_run_at': iso_utc(self.last_run_at),
            'last_run_status': self.last_run_status,
            'last_run_error': self.last_run_error,
            'next_run_at': iso_utc(self.next_run_at),
            'run_count': self.run_count or 0,
            'created_at': iso_utc(self.created_at),
            'updated_at': iso_utc(self.updated_at),
        }

    def __repr__(self):
        return f'<Schedule {self.name} ({self.id}) {self.container_name}:{self.action}>'
