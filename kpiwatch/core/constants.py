"""Named defaults shared by the engines and the settings object."""

# Status engine
WARNING_THRESHOLD_DAYS = 3
CRITICAL_THRESHOLD_DAYS = 0

# Days-overdue upper bounds for status escalation levels 2, 3, 4; anything beyond is level 5
STATUS_ESCALATION_LADDER = (3, 7, 14)

# Percentage aggregation policy
AGGREGATION_RED_SHARE = 0.20
AGGREGATION_YELLOW_SHARE = 0.30

# Days-overdue upper bounds for reminder escalation levels 1, 2, 3; anything beyond is level 4
REMINDER_ESCALATION_LADDER = (1, 3, 7)
CRITICAL_ESCALATION_LEVEL = 3

MAX_DAILY_REMINDERS = 5
MIN_HOURS_BETWEEN_REMINDERS = 4
# Window for recipients on a once-a-day digest (preference "daily_digest")
DAILY_REMINDER_MIN_HOURS = 24

HIGH_IMPACT_KEYWORDS = ("umsatz", "revenue", "critical", "kritisch")
DEFAULT_LANGUAGE = "de"

# Statistics engine
MIN_DATA_POINTS_FOR_STATISTICS = 3
MIN_DATA_POINTS_FOR_TREND = 2
TREND_WINDOW = 3
DETAILED_TREND_WINDOW = 5
TREND_CHANGE_THRESHOLD = 5.0
VOLATILITY_THRESHOLD = 30.0
OUTLIER_Z_THRESHOLD = 2.0
FORECAST_MIN_CONFIDENCE = 0.5
FORECAST_MARGIN_RATIO = 0.2

# Validation
MIN_KPI_NAME_LENGTH = 3
MAX_KPI_NAME_LENGTH = 255
MAX_VALUE_COMMENT_LENGTH = 1000
MAX_VALUE_MAGNITUDE = 999_999_999
LARGE_VALUE_WARNING = 1_000_000
MAX_BULK_KPIS = 100
DELETION_CRITICAL_KEYWORDS = ("umsatz", "gewinn", "hauptkennzahl", "revenue")
DELETION_AGE_WARNING_DAYS = 30
ARCHIVE_RECOMMENDATION_MIN_VALUES = 10

# Duplicate detection
FUZZY_PERIOD_SIMILARITY = 0.7
VALUE_SIMILARITY_THRESHOLD = 0.01
MAX_CONFLICTS_TO_RETURN = 10
OVERRIDE_MAX_AGE_HOURS = 24
SUSPICIOUS_CHANGE_PERCENT = 50.0
