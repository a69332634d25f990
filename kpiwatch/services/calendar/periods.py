"""
Period identifiers and due-date arithmetic.

Day differences follow one convention everywhere: ``days_between(a, b)`` is
the number of calendar days from ``a`` to ``b``, positive when ``b`` is
later. Call sites pass ``(now, due_date)`` and read the result as "days
remaining"; a negative result means the due date has passed.
"""
import re
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from kpiwatch.models.enums import Interval
from kpiwatch.models.kpi import KPI

DAYS_REMAINING_CONVENTION = "days_between(now, due_date) > 0 while the due date lies ahead"

PERIOD_PATTERN = re.compile(r"^(\d{4})-(\d{1,2}|W\d{1,2}|Q\d)$")
_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})$")
_WEEK_PATTERN = re.compile(r"^(\d{4})-W(\d{1,2})$")
_QUARTER_PATTERN = re.compile(r"^(\d{4})-Q(\d)$")

_MONTH_NAMES = [
    "Januar", "Februar", "März", "April", "Mai", "Juni",
    "Juli", "August", "September", "Oktober", "November", "Dezember",
]

QUARTER_START_MONTHS = (1, 4, 7, 10)


class Period(BaseModel):
    """Time bucket identifier: YYYY-MM (monthly), YYYY-Www (weekly) or YYYY-Qn (quarterly)."""
    model_config = ConfigDict(frozen=True)

    value: str

    @classmethod
    def parse(cls, value: str) -> "Period":
        """
        Parse and range-check a period string.

        Months and weeks come back zero-padded, so "2024-3" parses to "2024-03".

        Raises:
            ValueError: if the string is not a valid period identifier
        """
        if not isinstance(value, str) or not PERIOD_PATTERN.match(value):
            raise ValueError(
                "Ungültiges Zeitraum-Format. Verwenden Sie: YYYY-MM, YYYY-WXX oder YYYY-QX"
            )

        match = _MONTH_PATTERN.match(value)
        if match:
            month = int(match.group(2))
            if not 1 <= month <= 12:
                raise ValueError("Ungültiger Monat. Monate müssen zwischen 01 und 12 liegen.")
            return cls(value=f"{match.group(1)}-{month:02d}")

        match = _WEEK_PATTERN.match(value)
        if match:
            week = int(match.group(2))
            if not 1 <= week <= 53:
                raise ValueError("Ungültige Woche. Wochen müssen zwischen 01 und 53 liegen.")
            return cls(value=f"{match.group(1)}-W{week:02d}")

        match = _QUARTER_PATTERN.match(value)
        if match and not 1 <= int(match.group(2)) <= 4:
            raise ValueError("Ungültiges Quartal. Quartale müssen zwischen 1 und 4 liegen.")

        return cls(value=value)

    @classmethod
    def is_valid(cls, value: Optional[str]) -> bool:
        try:
            cls.parse(value)
        except ValueError:
            return False
        return True

    @classmethod
    def from_date(cls, moment: Union[date, datetime], interval: Interval) -> "Period":
        if interval is Interval.WEEKLY:
            iso_year, iso_week, _ = moment.isocalendar()
            return cls(value=f"{iso_year}-W{iso_week:02d}")
        if interval is Interval.MONTHLY:
            return cls(value=f"{moment.year}-{moment.month:02d}")
        if interval is Interval.QUARTERLY:
            return cls(value=f"{moment.year}-Q{(moment.month - 1) // 3 + 1}")
        raise ValueError(f'Invalid KPI interval "{interval}"')

    def format(self) -> str:
        """Display label, e.g. "Januar 2024", "KW 5/2024", "Q1 2024"."""
        match = _MONTH_PATTERN.match(self.value)
        if match:
            month = int(match.group(2))
            name = _MONTH_NAMES[month - 1] if 1 <= month <= 12 else f"Monat {month:02d}"
            return f"{name} {match.group(1)}"

        match = _WEEK_PATTERN.match(self.value)
        if match:
            return f"KW {int(match.group(2))}/{match.group(1)}"

        match = _QUARTER_PATTERN.match(self.value)
        if match:
            return f"Q{match.group(2)} {match.group(1)}"

        return self.value

    def start_date(self) -> date:
        """First calendar day of the period (Monday for ISO weeks)."""
        match = _MONTH_PATTERN.match(self.value)
        if match:
            return date(int(match.group(1)), int(match.group(2)), 1)

        match = _WEEK_PATTERN.match(self.value)
        if match:
            return date.fromisocalendar(int(match.group(1)), int(match.group(2)), 1)

        year, quarter = _QUARTER_PATTERN.match(self.value).groups()
        return date(int(year), QUARTER_START_MONTHS[int(quarter) - 1], 1)

    def __str__(self) -> str:
        return self.value


def current_period(interval: Interval, now: Optional[datetime] = None) -> Period:
    """Period the given instant falls into."""
    return Period.from_date(now or datetime.now(), interval)


def next_due_date(interval: Optional[Interval], now: Optional[datetime] = None) -> datetime:
    """
    Deadline for the current period's value.

    Weekly: next Monday (a full week ahead when ``now`` is a Monday).
    Monthly: first day of next month. Quarterly: first day of the next
    quarter start month. Anything else: one week from ``now``.
    """
    now = now or datetime.now()

    if interval is Interval.WEEKLY:
        return _next_monday(now)
    if interval is Interval.MONTHLY:
        return _first_of_next_month(now)
    if interval is Interval.QUARTERLY:
        return _next_quarter_start(now)
    return now + timedelta(days=7)


def adjust_to_business_day(moment: datetime) -> datetime:
    """Move Saturday and Sunday to the following Monday."""
    weekday = moment.weekday()
    if weekday == 5:
        return moment + timedelta(days=2)
    if weekday == 6:
        return moment + timedelta(days=1)
    return moment


def days_between(start: Union[date, datetime], end: Union[date, datetime]) -> int:
    """Calendar days from ``start`` to ``end``, both normalized to midnight."""
    return (_as_date(end) - _as_date(start)).days


def days_overdue(due_date: datetime, now: Optional[datetime] = None) -> int:
    """Days past the due date, 0 when not yet due."""
    return max(0, -days_between(now or datetime.now(), due_date))


def canonical_period(value: Optional[str]) -> Optional[str]:
    """Zero-padded form of a period string; anything unparseable is returned unchanged."""
    try:
        return Period.parse(value).value
    except ValueError:
        return value


def align_timezone(moment: datetime, reference: datetime) -> datetime:
    """
    Express ``moment`` with the same awareness as ``reference``.

    Naive datetimes are read as local time, the way ``datetime.now()`` produces them.
    """
    if reference.tzinfo is None:
        if moment.tzinfo is None:
            return moment
        return moment.astimezone().replace(tzinfo=None)
    return moment.astimezone(reference.tzinfo)


def _as_date(moment: Union[date, datetime]) -> date:
    return moment.date() if isinstance(moment, datetime) else moment


def _next_monday(moment: datetime) -> datetime:
    weekday = moment.weekday()
    if weekday == 0:
        return moment + timedelta(weeks=1)
    return moment + timedelta(days=7 - weekday)


def _first_of_next_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return datetime(moment.year + 1, 1, 1, tzinfo=moment.tzinfo)
    return datetime(moment.year, moment.month + 1, 1, tzinfo=moment.tzinfo)


def _next_quarter_start(moment: datetime) -> datetime:
    for month in QUARTER_START_MONTHS:
        if month > moment.month:
            return datetime(moment.year, month, 1, tzinfo=moment.tzinfo)
    return datetime(moment.year + 1, 1, 1, tzinfo=moment.tzinfo)


DueDateResolver = Callable[[KPI, datetime], datetime]


def interval_due_date(kpi: KPI, now: datetime) -> datetime:
    """Default resolver: next due date derived from the KPI's interval."""
    return next_due_date(kpi.interval, now)
