from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

MONTH_LABELS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)
DAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

RU_MONTH_LABELS = (
    "Янв",
    "Фев",
    "Мар",
    "Апр",
    "Май",
    "Июн",
    "Июл",
    "Авг",
    "Сен",
    "Окт",
    "Ноя",
    "Дек",
)
RU_DAY_LABELS = ("Пн", "Вт", "Ср", "Чт", "Пт", "Сб", "Вс")

# locale -> (month labels, weekday labels)
LABEL_SETS = {
    "en": (MONTH_LABELS, DAY_LABELS),
    "ru": (RU_MONTH_LABELS, RU_DAY_LABELS),
}


@dataclass(frozen=True)
class Slots:
    month: int
    weekday: int


def localize(moment: datetime, tz: ZoneInfo) -> datetime:
    """Return ``moment`` in ``tz``; naive values are taken as local already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def slots_for(moment: datetime, tz: ZoneInfo) -> Slots:
    local = localize(moment, tz)
    return Slots(month=local.month - 1, weekday=local.weekday())


def from_epoch(seconds: float, tz: ZoneInfo) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone(tz)


def week_start(moment: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Most recent Monday 00:00 at or before ``moment``."""
    local = localize(moment, tz) if tz else moment
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight - timedelta(days=midnight.weekday())


def year_start(moment: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Most recent January 1st 00:00 at or before ``moment``."""
    local = localize(moment, tz) if tz else moment
    return local.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
