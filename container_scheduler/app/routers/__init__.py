from .scheduler import router as scheduler_router
from .schedules import router as schedules_router

__all__ = ["schedules_router", "scheduler_router"]
