"""
Enum definitions for the KPI engines.

Every closed concept (interval, status, trend, reminder category, ...) is a
``str`` enum so values compare equal to their wire strings.
"""

from enum import Enum


class Interval(str, Enum):
    """Measurement interval of a KPI."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"

    @classmethod
    def from_string(cls, value: str) -> "Interval":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f'Invalid KPI interval "{value}"') from None

    @property
    def label(self) -> str:
        return _INTERVAL_LABELS[self]


_INTERVAL_LABELS = {
    Interval.WEEKLY: "Wöchentlich",
    Interval.MONTHLY: "Monatlich",
    Interval.QUARTERLY: "Quartalsweise",
}


class Status(str, Enum):
    """
    Traffic-light health of a KPI.

    GREEN = value recorded for the current period, or due date still far away
    YELLOW = due within the warning window
    RED = overdue
    """

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"

    @property
    def severity(self) -> int:
        return _STATUS_SEVERITY[self]

    def is_worse_than(self, other: "Status") -> bool:
        return self.severity > other.severity

    def is_better_than(self, other: "Status") -> bool:
        return self.severity < other.severity

    @property
    def is_critical(self) -> bool:
        return self is not Status.GREEN

    @property
    def description(self) -> str:
        return _STATUS_DESCRIPTIONS[self]

    @property
    def icon(self) -> str:
        return _STATUS_ICONS[self]

    @property
    def css_class(self) -> str:
        return f"status-{self.value}"


_STATUS_SEVERITY = {Status.GREEN: 1, Status.YELLOW: 2, Status.RED: 3}
_STATUS_DESCRIPTIONS = {
    Status.GREEN: "Alle Werte erfasst",
    Status.YELLOW: "Bald fällig",
    Status.RED: "Überfällig",
}
_STATUS_ICONS = {Status.GREEN: "✅", Status.YELLOW: "⚠️", Status.RED: "❌"}


class AggregationPolicy(str, Enum):
    """How a collection of statuses collapses into one."""

    SEVERITY_MAX = "severity_max"
    PERCENTAGE = "percentage"


class TrendDirection(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"
    VOLATILE = "volatile"
    NO_DATA = "no_data"


class ReminderCategory(str, Enum):
    """Reminder buckets, declared in quota iteration order."""

    UPCOMING = "upcoming"
    DUE_TODAY = "due_today"
    OVERDUE = "overdue"
    CRITICAL = "critical"


class UrgencyLabel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotifyRole(str, Enum):
    OWNER = "Owner"
    TEAM_LEAD = "Team Lead"
    MANAGEMENT = "Management"


class CorrelationStrength(str, Enum):
    VERY_STRONG = "very_strong"
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    VERY_WEAK = "very_weak"
    INSUFFICIENT_DATA = "insufficient_data"
    UNKNOWN = "unknown"


class Relationship(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NONE = "none"


class ForecastStatus(str, Enum):
    SUCCESS = "success"
    INSUFFICIENT_DATA = "insufficient_data_for_forecast"
    LOW_CONFIDENCE = "low_confidence_forecast"


class DuplicateType(str, Enum):
    EXACT = "exact"
    FUZZY_PERIOD = "fuzzy_period"
    SIMILAR_VALUE = "similar_value"
    NONE = "none"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
