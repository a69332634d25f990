from collections import Counter
from datetime import datetime
from typing import Callable, Collection, Iterable, List, Optional, Sequence

from kpiwatch.core import constants
from kpiwatch.core.config import Settings, get_settings
from kpiwatch.core.logging import get_logger
from kpiwatch.models.enums import AggregationPolicy, Status
from kpiwatch.models.kpi import KPI
from kpiwatch.schemas.status import KPIPriority, StatusSummary
from kpiwatch.services.calendar.periods import (
    DueDateResolver,
    adjust_to_business_day,
    current_period,
    days_between,
    next_due_date,
)
from kpiwatch.services.lookup.adapters import CachedValueLookup, ValueLookup

logger = get_logger(__name__)


def determine_status(days_remaining: int, warning_days: int, critical_days: int) -> Status:
    """Status of a KPI without a value for the current period."""
    if days_remaining < critical_days:
        return Status.RED
    if days_remaining <= warning_days:
        return Status.YELLOW
    return Status.GREEN


def aggregate_statuses(
    statuses: Iterable[Status],
    policy: AggregationPolicy = AggregationPolicy.SEVERITY_MAX
) -> Status:
    """
    Collapse many statuses into one.

    SEVERITY_MAX: the worst status present.
    PERCENTAGE: red above 20 % red; yellow with any red or above 30 % yellow.
    An empty collection is green under both policies.
    """
    counts = Counter(statuses)
    total = sum(counts.values())
    if total == 0:
        return Status.GREEN

    if policy is AggregationPolicy.PERCENTAGE:
        red_share = counts[Status.RED] / total
        yellow_share = counts[Status.YELLOW] / total
        if red_share > constants.AGGREGATION_RED_SHARE:
            return Status.RED
        if counts[Status.RED] > 0 or yellow_share > constants.AGGREGATION_YELLOW_SHARE:
            return Status.YELLOW
        return Status.GREEN

    if counts[Status.RED]:
        return Status.RED
    if counts[Status.YELLOW]:
        return Status.YELLOW
    return Status.GREEN


def escalation_level_for_days(days_overdue: int, ladder: Sequence[int] = constants.STATUS_ESCALATION_LADDER) -> int:
    """Operational severity of a red KPI: 2 for the first bound, one more per bound passed."""
    for level, bound in enumerate(ladder, start=2):
        if days_overdue <= bound:
            return level
    return len(ladder) + 2


class StatusEngine:
    """Traffic-light status of KPIs, recomputed on every call."""

    def __init__(
        self,
        lookup: ValueLookup,
        settings: Optional[Settings] = None,
        due_date_resolver: Optional[DueDateResolver] = None
    ):
        settings = settings or get_settings()
        self.lookup = lookup
        self.due_date_resolver = due_date_resolver
        self.warning_days = settings.WARNING_THRESHOLD_DAYS
        self.critical_days = settings.CRITICAL_THRESHOLD_DAYS
        self.adjust_business_days = settings.ADJUST_TO_BUSINESS_DAY
        self.escalation_ladder = tuple(settings.STATUS_ESCALATION_LADDER)
        self.aggregation_policy = AggregationPolicy(settings.STATUS_AGGREGATION_POLICY)
        self.high_impact_keywords = [keyword.lower() for keyword in settings.HIGH_IMPACT_KEYWORDS]

    def calculate_due_date(self, kpi: KPI, now: Optional[datetime] = None) -> datetime:
        """Deadline for the current period; a custom resolver's date is used as given."""
        now = now or datetime.now()
        if self.due_date_resolver is not None:
            return self.due_date_resolver(kpi, now)

        due_date = next_due_date(kpi.interval, now)
        if self.adjust_business_days:
            due_date = adjust_to_business_day(due_date)
        return due_date

    def has_current_value(self, kpi: KPI, now: Optional[datetime] = None, lookup: Optional[ValueLookup] = None) -> bool:
        if kpi.interval is None:
            return False
        lookup = lookup or self.lookup
        return lookup.find_value(kpi, current_period(kpi.interval, now)) is not None

    def days_remaining(self, kpi: KPI, now: Optional[datetime] = None) -> int:
        """Days until the due date; negative once overdue."""
        now = now or datetime.now()
        return days_between(now, self.calculate_due_date(kpi, now))

    def calculate_status(
        self,
        kpi: KPI,
        now: Optional[datetime] = None,
        warning_threshold_days: Optional[int] = None,
        critical_threshold_days: Optional[int] = None,
        lookup: Optional[ValueLookup] = None
    ) -> Status:
        """
        Status of one KPI.

        Args:
            kpi: KPI to evaluate
            now: Reference instant, defaults to the current time
            warning_threshold_days: Days before the due date that turn the KPI yellow
            critical_threshold_days: Days remaining below which the KPI is red
            lookup: Lookup to use instead of the engine's own, e.g. a pass-scoped cache

        Returns:
            GREEN whenever a value exists for the current period
        """
        now = now or datetime.now()
        warning_days = self.warning_days if warning_threshold_days is None else warning_threshold_days
        critical_days = self.critical_days if critical_threshold_days is None else critical_threshold_days

        if self.has_current_value(kpi, now, lookup):
            return Status.GREEN

        return determine_status(self.days_remaining(kpi, now), warning_days, critical_days)

    def calculate_status_for_multiple(self, kpis: Sequence[KPI], now: Optional[datetime] = None) -> List[Status]:
        now = now or datetime.now()
        lookup = CachedValueLookup(self.lookup)
        return [self.calculate_status(kpi, now, lookup=lookup) for kpi in kpis]

    def calculate_aggregated_status(
        self,
        kpis: Sequence[KPI],
        now: Optional[datetime] = None,
        policy: Optional[AggregationPolicy] = None
    ) -> Status:
        return aggregate_statuses(self.calculate_status_for_multiple(kpis, now), policy or self.aggregation_policy)

    def calculate_detailed_summary(
        self,
        kpis: Sequence[KPI],
        now: Optional[datetime] = None,
        policy: Optional[AggregationPolicy] = None
    ) -> StatusSummary:
        statuses = self.calculate_status_for_multiple(kpis, now)
        counts = Counter(statuses)
        total = len(statuses)

        def share(count: int) -> float:
            return round(count / total * 100, 1) if total else 0.0

        return StatusSummary(
            overall_status=aggregate_statuses(statuses, policy or self.aggregation_policy),
            total_kpis=total,
            green_count=counts[Status.GREEN],
            yellow_count=counts[Status.YELLOW],
            red_count=counts[Status.RED],
            green_percentage=share(counts[Status.GREEN]),
            critical_percentage=share(counts[Status.YELLOW] + counts[Status.RED]),
        )

    def calculate_escalation_level(self, kpi: KPI, now: Optional[datetime] = None) -> int:
        """
        Escalation level on the status scale.

        0 = green, 1 = yellow, 2..5 = red, rising with the days overdue.
        """
        now = now or datetime.now()
        status = self.calculate_status(kpi, now)

        if status is Status.GREEN:
            return 0
        if status is Status.YELLOW:
            return 1

        days_overdue = max(0, -self.days_remaining(kpi, now))
        return escalation_level_for_days(days_overdue, self.escalation_ladder)

    def has_high_business_impact(self, kpi: KPI, high_impact_ids: Collection = ()) -> bool:
        name = (kpi.name or "").lower()
        if any(keyword in name for keyword in self.high_impact_keywords):
            return True
        return kpi.id is not None and kpi.id in high_impact_ids

    def is_critical(self, kpi: KPI, now: Optional[datetime] = None, high_impact_ids: Collection = ()) -> bool:
        """Red KPIs, and yellow ones with high business impact."""
        status = self.calculate_status(kpi, now)
        if status is Status.RED:
            return True
        return status is Status.YELLOW and self.has_high_business_impact(kpi, high_impact_ids)

    def calculate_priorities(self, kpis: Sequence[KPI], now: Optional[datetime] = None) -> List[KPIPriority]:
        statuses = self.calculate_status_for_multiple(kpis, now)
        return [
            KPIPriority(kpi=kpi, status=status, priority=status.severity)
            for kpi, status in zip(kpis, statuses)
        ]

    def filter_by_status(
        self,
        kpis: Sequence[KPI],
        condition: Callable[[Status], bool],
        now: Optional[datetime] = None
    ) -> List[KPI]:
        statuses = self.calculate_status_for_multiple(kpis, now)
        return [kpi for kpi, status in zip(kpis, statuses) if condition(status)]
