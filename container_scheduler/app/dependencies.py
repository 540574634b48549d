"""
FastAPI dependencies.
"""

from typing import Annotated

from fastapi import Depends

from ..scheduler.service import ScheduleService
from .scheduler_runtime import get_service


def get_schedule_service() -> ScheduleService:
    return get_service()


ScheduleServiceDep = Annotated[ScheduleService, Depends(get_schedule_service)]
