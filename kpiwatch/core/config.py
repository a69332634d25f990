from functools import lru_cache
from typing import List, Tuple

from pydantic_settings import BaseSettings

from kpiwatch.core import constants


class Settings(BaseSettings):
    ENV: str = "dev"
    LOG_LEVEL: str = ""

    # Status engine
    WARNING_THRESHOLD_DAYS: int = constants.WARNING_THRESHOLD_DAYS
    CRITICAL_THRESHOLD_DAYS: int = constants.CRITICAL_THRESHOLD_DAYS
    ADJUST_TO_BUSINESS_DAY: bool = True
    STATUS_ESCALATION_LADDER: Tuple[int, ...] = constants.STATUS_ESCALATION_LADDER
    STATUS_AGGREGATION_POLICY: str = "severity_max"  # or "percentage"

    # Reminders
    REMINDER_ESCALATION_LADDER: Tuple[int, ...] = constants.REMINDER_ESCALATION_LADDER
    MAX_DAILY_REMINDERS: int = constants.MAX_DAILY_REMINDERS
    MIN_HOURS_BETWEEN_REMINDERS: int = constants.MIN_HOURS_BETWEEN_REMINDERS
    DAILY_REMINDER_MIN_HOURS: int = constants.DAILY_REMINDER_MIN_HOURS
    HIGH_IMPACT_KEYWORDS: List[str] = list(constants.HIGH_IMPACT_KEYWORDS)
    DEFAULT_LANGUAGE: str = constants.DEFAULT_LANGUAGE

    # Statistics
    OUTLIER_Z_THRESHOLD: float = constants.OUTLIER_Z_THRESHOLD
    FORECAST_MIN_CONFIDENCE: float = constants.FORECAST_MIN_CONFIDENCE

    # Duplicate detection / overrides
    FUZZY_PERIOD_SIMILARITY: float = constants.FUZZY_PERIOD_SIMILARITY
    VALUE_SIMILARITY_THRESHOLD: float = constants.VALUE_SIMILARITY_THRESHOLD
    OVERRIDE_MAX_AGE_HOURS: int = constants.OVERRIDE_MAX_AGE_HOURS
    SUSPICIOUS_CHANGE_PERCENT: float = constants.SUSPICIOUS_CHANGE_PERCENT

    class Config:
        env_file = ".env"
        env_prefix = "KPIWATCH_"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
