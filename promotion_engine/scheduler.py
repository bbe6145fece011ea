"""
Recurring triggers for the promotion engine.

Every scheduled job is a RecurringTrigger: a name, a crontab expression and
a callable. The daily cycle and the two Black Friday dates are just three
triggers with different expressions.

Triggers run on an APScheduler BackgroundScheduler. Each job allows a single
running instance and coalesces missed runs, and every firing goes through one
shared lock, so two jobs never touch the catalog at the same time.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from promotion_engine.exceptions import SchedulerStateError
from shared.settings import PromotionEngineSettings, get_settings

logger = logging.getLogger("promotion_scheduler")

DAILY_CYCLE = "daily-cycle"
BLACK_FRIDAY_START = "black-friday-start"
BLACK_FRIDAY_END = "black-friday-end"


@dataclass
class RecurringTrigger:
    """A job fired on a crontab schedule (minute hour day month day_of_week)."""
    name: str
    cron_expression: str
    job: Callable[[], Any]

    def build_trigger(self, timezone: Optional[str] = None) -> CronTrigger:
        return CronTrigger.from_crontab(self.cron_expression, timezone=timezone)

    def next_fire_time(self, now: datetime, timezone: Optional[str] = None) -> Optional[datetime]:
        """When this trigger fires next after `now` (an aware datetime)."""
        return self.build_trigger(timezone).get_next_fire_time(None, now)


def build_default_triggers(service, settings: Optional[PromotionEngineSettings] = None) -> list[RecurringTrigger]:
    """The daily cycle and the two Black Friday jobs for a PromotionService."""
    if service is None:
        raise SchedulerStateError("A PromotionService is required to build the triggers")
    settings = settings or get_settings()
    return [
        RecurringTrigger(name, cron_expression, getattr(service, service.JOBS[name]))
        for name, cron_expression in (
            (DAILY_CYCLE, settings.daily_cron),
            (BLACK_FRIDAY_START, settings.black_friday_start_cron),
            (BLACK_FRIDAY_END, settings.black_friday_end_cron),
        )
    ]


class PromotionScheduler:
    """
    Runs RecurringTriggers in the background.

    Example:
        scheduler = PromotionScheduler(settings=settings)
        for trigger in build_default_triggers(service, settings):
            scheduler.add_trigger(trigger)
        scheduler.start()
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        settings: Optional[PromotionEngineSettings] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.settings = settings or get_settings()
        self.timezone = self.settings.scheduler_timezone
        if scheduler is None:
            scheduler = BackgroundScheduler(timezone=self.timezone) if self.timezone else BackgroundScheduler()
        self._scheduler = scheduler
        self._triggers: dict[str, RecurringTrigger] = {}
        self._firing_lock = threading.Lock()

    def add_trigger(self, trigger: RecurringTrigger) -> None:
        """Register (or replace) a trigger."""
        self._triggers[trigger.name] = trigger
        self._scheduler.add_job(
            self.run_job,
            trigger=trigger.build_trigger(self.timezone),
            args=[trigger.name],
            id=trigger.name,
            name=trigger.name,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Registered trigger '{trigger.name}' ({trigger.cron_expression})")

    def get_trigger(self, name: str) -> Optional[RecurringTrigger]:
        return self._triggers.get(name)

    def trigger_names(self) -> list[str]:
        return list(self._triggers)

    def run_job(self, name: str) -> Any:
        """
        Fire a trigger now, waiting for any other firing to finish first.

        Errors are logged with their traceback and re-raised.

        Raises:
            SchedulerStateError: no trigger with this name
        """
        trigger = self._triggers.get(name)
        if trigger is None:
            raise SchedulerStateError(f"Unknown trigger: {name}")

        with self._firing_lock:
            logger.info(f"Firing '{name}'")
            try:
                result = trigger.job()
            except Exception:
                logger.exception(f"Trigger '{name}' failed")
                raise
            logger.info(f"Trigger '{name}' finished")
            return result

    def start(self) -> None:
        self._scheduler.start()
        logger.info(f"Scheduler started with {len(self._triggers)} triggers")

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler.running
