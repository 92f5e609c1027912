import logging
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Callable, Optional, Sequence
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Settings, get_settings
from periods import localize, week_start, year_start
from services import ResetService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResetRule:
    """Fires ``action`` once each time ``boundary`` moves past a tick.

    ``boundary(now)`` returns the latest trigger instant at or before
    ``now``; the rule is due when that instant falls in ``(last_tick, now]``.
    """

    name: str
    boundary: Callable[[datetime], datetime]
    action: Callable[[], object]

    def is_due(self, last_tick: datetime, now: datetime) -> bool:
        mark = self.boundary(now)
        return last_tick < mark <= now


def default_rules(resets: ResetService, tz: ZoneInfo) -> list[ResetRule]:
    return [
        ResetRule("weekly_reset", partial(week_start, tz=tz), resets.weekly),
        ResetRule("yearly_reset", partial(year_start, tz=tz), resets.yearly),
    ]


class ResetLoop:
    def __init__(
        self,
        rules: Sequence[ResetRule],
        tz: ZoneInfo,
        *,
        started_at: Optional[datetime] = None,
    ) -> None:
        self.rules = list(rules)
        self.tz = tz
        self.last_tick = localize(started_at or datetime.now(tz), tz)

    def tick(self, now: Optional[datetime] = None) -> list[str]:
        now = localize(now or datetime.now(self.tz), self.tz)
        if now <= self.last_tick:
            return []
        fired: list[str] = []
        for rule in self.rules:
            if not rule.is_due(self.last_tick, now):
                continue
            logger.info(f"scheduler_run: rule={rule.name} at={now.isoformat()}")
            try:
                rule.action()
            except Exception:
                logger.exception(f"scheduler_run: rule={rule.name} failed, skipping")
                continue
            fired.append(rule.name)
        self.last_tick = now
        return fired


class SchedulerManager:
    def __init__(self, resets: ResetService, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        tz = ZoneInfo(self.settings.timezone)
        self.loop = ResetLoop(default_rules(resets, tz), tz)
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def start(self) -> None:
        trigger = IntervalTrigger(seconds=self.settings.scheduler_tick_secs)
        self.scheduler.add_job(
            self.loop.tick,
            trigger,
            id="ledger_resets",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )
        self.scheduler.start()
        logger.info(
            f"Scheduler started, evaluating resets every {self.settings.scheduler_tick_secs}s"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            # waits for a reset already in progress
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler stopped")
