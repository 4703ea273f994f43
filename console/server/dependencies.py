"""
Global dependency instances for the console server.

Initialized during app lifespan, accessed by routers.
"""

from nightshift.scheduler.scheduler import NightShiftScheduler

_scheduler: NightShiftScheduler | None = None


def set_scheduler(scheduler: NightShiftScheduler) -> None:
    global _scheduler
    _scheduler = scheduler


def get_scheduler() -> NightShiftScheduler:
    if _scheduler is None:
        raise RuntimeError("NightShiftScheduler not initialized")
    return _scheduler
