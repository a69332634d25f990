"""Reminder categorization, urgency ranking, throttling and escalation."""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from kpiwatch.core import constants
from kpiwatch.core.config import Settings, get_settings
from kpiwatch.core.logging import get_logger
from kpiwatch.models.enums import NotifyRole, ReminderCategory, UrgencyLabel
from kpiwatch.models.kpi import KPI
from kpiwatch.schemas.reminder import EscalationInfo, Reminder, ReminderStatistics, ThrottleDecision
from kpiwatch.services.calendar.periods import (
    DueDateResolver,
    current_period,
    days_between,
    interval_due_date,
)
from kpiwatch.services.lookup.adapters import CachedValueLookup, ValueLookup

logger = get_logger(__name__)

BASE_URGENCY = {
    ReminderCategory.CRITICAL: 100,
    ReminderCategory.OVERDUE: 50,
    ReminderCategory.DUE_TODAY: 30,
    ReminderCategory.UPCOMING: 10,
}

ESCALATION_URGENCY = {
    1: UrgencyLabel.LOW,
    2: UrgencyLabel.MEDIUM,
    3: UrgencyLabel.HIGH,
}


def reminder_escalation_level(
    days_overdue: int,
    ladder: Sequence[int] = constants.REMINDER_ESCALATION_LADDER
) -> int:
    """Notification tier of an overdue KPI: 1 for the first bound, len(ladder) + 1 beyond the last."""
    for level, bound in enumerate(ladder, start=1):
        if days_overdue <= bound:
            return level
    return len(ladder) + 1


def categorize(category: ReminderCategory, escalation_level: int) -> ReminderCategory:
    """Overdue KPIs at the top tiers become critical."""
    if category is ReminderCategory.OVERDUE and escalation_level >= constants.CRITICAL_ESCALATION_LEVEL:
        return ReminderCategory.CRITICAL
    return category


def urgency_label(score: int) -> UrgencyLabel:
    if score >= 80:
        return UrgencyLabel.CRITICAL
    if score >= 40:
        return UrgencyLabel.HIGH
    if score >= 20:
        return UrgencyLabel.MEDIUM
    return UrgencyLabel.LOW


def notify_roles_for_level(level: int) -> List[NotifyRole]:
    roles = [NotifyRole.OWNER]
    if level >= 3:
        roles.append(NotifyRole.TEAM_LEAD)
    if level >= 4:
        roles.append(NotifyRole.MANAGEMENT)
    return roles


def is_too_soon(last_sent: Optional[datetime], now: Optional[datetime] = None, min_hours: int = constants.MIN_HOURS_BETWEEN_REMINDERS) -> bool:
    """
    Anti-spam check.

    Returns True when fewer than ``min_hours`` have passed since ``last_sent``.
    Anything that cannot be compared counts as "not too soon".
    """
    if last_sent is None:
        return False

    try:
        elapsed = (now or datetime.now()) - last_sent
        return elapsed < timedelta(hours=min_hours)
    except (TypeError, ValueError) as e:
        logger.warning(f"Could not compare reminder timestamps, allowing reminder: {e}")
        return False


class ReminderEngine:
    """Decides which KPIs get a reminder, how urgent it is and who hears about it."""

    def __init__(
        self,
        lookup: ValueLookup,
        settings: Optional[Settings] = None,
        due_date_resolver: Optional[DueDateResolver] = None
    ):
        settings = settings or get_settings()
        self.lookup = lookup
        self.due_date_resolver = due_date_resolver or interval_due_date
        self.warning_days = settings.WARNING_THRESHOLD_DAYS
        self.escalation_ladder = tuple(settings.REMINDER_ESCALATION_LADDER)
        self.max_daily_reminders = settings.MAX_DAILY_REMINDERS
        self.min_hours_between = settings.MIN_HOURS_BETWEEN_REMINDERS
        self.daily_min_hours = settings.DAILY_REMINDER_MIN_HOURS
        self.high_impact_keywords = [keyword.lower() for keyword in settings.HIGH_IMPACT_KEYWORDS]

    def has_high_business_impact(self, kpi: KPI) -> bool:
        name = (kpi.name or "").lower()
        return any(keyword in name for keyword in self.high_impact_keywords)

    def calculate_urgency_score(self, category: ReminderCategory, escalation_level: int, kpi: KPI) -> int:
        """
        Ranking score of a reminder.

        Critical reminders are scored from the critical base, not from the
        overdue base they were recategorized from.

        Args:
            category: Final reminder category
            escalation_level: Reminder escalation level
            kpi: KPI the reminder is about

        Returns:
            base(category) * (1 + 0.5 * level) * impact, truncated
        """
        multiplier = 1 + escalation_level * 0.5
        impact = 2 if self.has_high_business_impact(kpi) else 1
        return int(BASE_URGENCY[category] * multiplier * impact)

    def analyze_kpi(
        self,
        kpi: KPI,
        now: Optional[datetime] = None,
        lookup: Optional[ValueLookup] = None
    ) -> Optional[Reminder]:
        """Reminder for one KPI, or None if it has a current value or is not due soon."""
        now = now or datetime.now()
        lookup = lookup or self.lookup

        if kpi.interval is None:
            logger.warning(f"KPI '{kpi.name}' has no interval, skipping reminder analysis")
            return None

        period = current_period(kpi.interval, now)
        if lookup.find_value(kpi, period) is not None:
            return None

        due_date = self.due_date_resolver(kpi, now)
        days_diff = days_between(now, due_date)
        escalation_level = 1

        if days_diff < 0:
            category = ReminderCategory.OVERDUE
            escalation_level = reminder_escalation_level(-days_diff, self.escalation_ladder)
        elif days_diff == 0:
            category = ReminderCategory.DUE_TODAY
        elif days_diff <= self.warning_days:
            category = ReminderCategory.UPCOMING
        else:
            return None

        category = categorize(category, escalation_level)

        return Reminder(
            kpi=kpi,
            category=category,
            urgency=self.calculate_urgency_score(category, escalation_level, kpi),
            escalation_level=escalation_level,
            days_overdue=max(0, -days_diff),
            days_until_due=max(0, days_diff),
            due_date=due_date,
            period=period.format(),
        )

    def _collect(self, kpis: Iterable[KPI], now: datetime) -> Dict[ReminderCategory, List[Reminder]]:
        lookup = CachedValueLookup(self.lookup)
        groups: Dict[ReminderCategory, List[Reminder]] = {category: [] for category in ReminderCategory}

        for kpi in kpis:
            reminder = self.analyze_kpi(kpi, now, lookup)
            if reminder is not None:
                groups[reminder.category].append(reminder)

        return groups

    def get_kpis_needing_reminder(
        self,
        kpis: Iterable[KPI],
        now: Optional[datetime] = None,
        max_daily: Optional[int] = None
    ) -> Dict[ReminderCategory, List[Reminder]]:
        """
        Group KPIs needing a reminder by category and apply the daily quota.

        Buckets are filled in the order upcoming, due_today, overdue, critical.
        Each bucket is ranked by urgency (ties keep input order) and the quota
        is consumed bucket by bucket in that same order.
        """
        now = now or datetime.now()
        quota = self.max_daily_reminders if max_daily is None else max_daily
        remaining = quota
        groups = self._collect(kpis, now)

        for category in ReminderCategory:
            ranked = sorted(groups[category], key=lambda reminder: reminder.urgency, reverse=True)
            groups[category] = ranked[:max(0, remaining)]
            remaining -= len(groups[category])

        total = sum(len(group) for group in groups.values())
        logger.debug(f"{total} reminders selected (quota {quota})")
        return groups

    def is_too_soon(
        self,
        last_sent: Optional[datetime],
        now: Optional[datetime] = None,
        min_hours: Optional[int] = None,
        daily: bool = False
    ) -> bool:
        """Anti-spam check with the engine's window; ``daily`` selects the once-a-day window."""
        if min_hours is None:
            min_hours = self.daily_min_hours if daily else self.min_hours_between
        return is_too_soon(last_sent, now, min_hours)

    def should_send_reminder(
        self,
        kpi: KPI,
        last_sent: Optional[datetime] = None,
        preferences: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> ThrottleDecision:
        """
        Decide whether a reminder for ``kpi`` may go out now.

        Args:
            kpi: KPI to check
            last_sent: When the last reminder for this KPI was sent
            preferences: Recipient settings; ``reminders_enabled``,
                ``kpi_reminders`` (KPI id -> bool), ``min_urgency_level`` and
                ``daily_digest`` (24 hour anti-spam window instead of 4)
            now: Reference instant

        Returns:
            ThrottleDecision with the reason for the outcome
        """
        now = now or datetime.now()
        preferences = preferences or {}

        blocked = self._check_throttle(kpi, last_sent, preferences, now)
        if blocked is not None:
            return blocked

        reminder = self.analyze_kpi(kpi, now)
        if reminder is None:
            return ThrottleDecision(send=False, reason="not_due")

        return self.throttle(reminder, None, preferences, now)

    def _check_throttle(
        self,
        kpi: KPI,
        last_sent: Optional[datetime],
        preferences: Dict[str, Any],
        now: datetime
    ) -> Optional[ThrottleDecision]:
        if self.is_too_soon(last_sent, now, daily=preferences.get("daily_digest", False)):
            return ThrottleDecision(send=False, reason="too_soon")

        if not preferences.get("reminders_enabled", True):
            return ThrottleDecision(send=False, reason="reminders_disabled")

        if not preferences.get("kpi_reminders", {}).get(kpi.id, True):
            return ThrottleDecision(send=False, reason="kpi_reminders_disabled")

        return None

    def throttle(
        self,
        reminder: Reminder,
        last_sent: Optional[datetime] = None,
        preferences: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> ThrottleDecision:
        """Anti-spam and preference checks for an already computed reminder."""
        now = now or datetime.now()
        preferences = preferences or {}

        blocked = self._check_throttle(reminder.kpi, last_sent, preferences, now)
        if blocked is not None:
            return blocked

        if reminder.urgency < preferences.get("min_urgency_level", 1):
            return ThrottleDecision(send=False, reason="below_min_urgency")

        return ThrottleDecision(send=True, reason=reminder.category.value)

    def calculate_escalation(self, days_overdue: int) -> EscalationInfo:
        """Escalation level, urgency and roles to notify for a KPI overdue by ``days_overdue`` days."""
        level = reminder_escalation_level(max(0, days_overdue), self.escalation_ladder)
        return EscalationInfo(
            level=level,
            urgency=ESCALATION_URGENCY.get(level, UrgencyLabel.CRITICAL),
            notify_roles=notify_roles_for_level(level),
        )

    def calculate_next_reminder_time(
        self,
        kpi: KPI,
        category: ReminderCategory,
        now: Optional[datetime] = None
    ) -> datetime:
        now = now or datetime.now()

        if category is ReminderCategory.UPCOMING:
            due_date = self.due_date_resolver(kpi, now)
            return (due_date - timedelta(days=1)).replace(hour=9, minute=0, second=0, microsecond=0)

        if category is ReminderCategory.DUE_TODAY:
            return now.replace(hour=9, minute=0, second=0, microsecond=0)

        if category is ReminderCategory.OVERDUE:
            due_date = self.due_date_resolver(kpi, now)
            overdue = max(0, -days_between(now, due_date))
            for threshold in self.escalation_ladder:
                if overdue < threshold:
                    return (due_date + timedelta(days=threshold)).replace(hour=10, minute=0, second=0, microsecond=0)
            return (now + timedelta(weeks=1)).replace(hour=10, minute=0, second=0, microsecond=0)

        # critical: remind again every two hours
        return now + timedelta(hours=2)

    def calculate_reminder_statistics(self, kpis: Sequence[KPI], now: Optional[datetime] = None) -> ReminderStatistics:
        """Reminder workload and health score; counts ignore the daily quota."""
        total = len(kpis)
        if total == 0:
            return ReminderStatistics()

        groups = self._collect(kpis, now or datetime.now())
        counts = {category: len(groups[category]) for category in ReminderCategory}
        needing = sum(counts.values())
        completion_rate = round((total - needing) / total * 100, 1)

        critical_share = counts[ReminderCategory.CRITICAL] / total * 100
        overdue_share = counts[ReminderCategory.OVERDUE] / total * 100
        health_score = completion_rate - critical_share * 2 - overdue_share

        return ReminderStatistics(
            total_kpis=total,
            upcoming=counts[ReminderCategory.UPCOMING],
            due_today=counts[ReminderCategory.DUE_TODAY],
            overdue=counts[ReminderCategory.OVERDUE],
            critical=counts[ReminderCategory.CRITICAL],
            completed=total - needing,
            completion_rate=completion_rate,
            health_score=max(0, min(100, int(health_score))),
        )
