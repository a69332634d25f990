from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kpiwatch.core import constants
from kpiwatch.models.enums import CorrelationStrength, ForecastStatus, Relationship, TrendDirection


class Trend(BaseModel):
    """Direction of recent values with the numbers behind it."""
    model_config = ConfigDict(frozen=True)

    direction: TrendDirection
    percentage_change: Optional[float] = None
    volatility: Optional[float] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    data_points: int = Field(default=0, ge=0)
    timeframe: Optional[str] = None

    @classmethod
    def no_data(cls) -> "Trend":
        return cls(direction=TrendDirection.NO_DATA, confidence=0.0, data_points=0)

    @classmethod
    def stable(cls, percentage_change: float = 0.0, confidence: float = 1.0, data_points: int = 0) -> "Trend":
        return cls(
            direction=TrendDirection.STABLE,
            percentage_change=percentage_change,
            confidence=confidence,
            data_points=data_points,
        )

    @classmethod
    def from_data(
        cls,
        percentage_change: float,
        volatility: float = 0.0,
        data_points: int = 0,
        confidence: float = 1.0,
        relative_volatility: float = 0.0,
    ) -> "Trend":
        """
        Classify a trend from its measurements.

        Args:
            percentage_change: Change from oldest to newest value in percent
            volatility: Standard deviation of the analysed values
            data_points: Number of analysed values
            confidence: Confidence in [0, 1]
            relative_volatility: Volatility as percent of the mean

        Returns:
            Trend with a direction; ``no_data`` below two data points
        """
        if data_points < constants.MIN_DATA_POINTS_FOR_TREND:
            return cls.no_data()

        if relative_volatility > constants.VOLATILITY_THRESHOLD:
            direction = TrendDirection.VOLATILE
        elif percentage_change > constants.TREND_CHANGE_THRESHOLD:
            direction = TrendDirection.RISING
        elif percentage_change < -constants.TREND_CHANGE_THRESHOLD:
            direction = TrendDirection.FALLING
        else:
            direction = TrendDirection.STABLE

        return cls(
            direction=direction,
            percentage_change=percentage_change,
            volatility=volatility,
            confidence=confidence,
            data_points=data_points,
        )

    @property
    def is_no_data(self) -> bool:
        return self.direction is TrendDirection.NO_DATA

    @property
    def is_positive(self) -> bool:
        return self.direction in (TrendDirection.RISING, TrendDirection.STABLE)

    @property
    def is_negative(self) -> bool:
        return self.direction is TrendDirection.FALLING

    @property
    def is_reliable(self) -> bool:
        return self.data_points >= 3 and self.confidence >= 0.7 and not self.is_no_data

    @property
    def strength(self) -> str:
        if self.is_no_data or self.percentage_change is None:
            return "unknown"

        change = abs(self.percentage_change)
        if change >= 50:
            return "very_strong"
        if change >= 20:
            return "strong"
        if change >= 10:
            return "moderate"
        if change >= 5:
            return "weak"
        return "minimal"

    @property
    def formatted_change(self) -> str:
        if self.percentage_change is None:
            return "N/A"
        sign = "+" if self.percentage_change >= 0 else ""
        return f"{sign}{self.percentage_change:.1f}%"

    def compare_with(self, other: "Trend") -> str:
        if self.direction == other.direction:
            return "identical"
        if self.is_positive and other.is_negative:
            return "improved"
        if self.is_negative and other.is_positive:
            return "worsened"
        return "changed"

    def __str__(self) -> str:
        if self.percentage_change is not None:
            return f"{self.direction.value} ({self.formatted_change})"
        return self.direction.value


class StatisticsSnapshot(BaseModel):
    """Immutable aggregate over a KPI's value history."""
    model_config = ConfigDict(frozen=True)

    total_entries: int = Field(ge=0)
    average: Optional[float] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    median: Optional[float] = None
    variance: Optional[float] = None
    standard_deviation: Optional[float] = None
    latest_value: Optional[float] = None
    latest_period: Optional[str] = None
    oldest_value: Optional[float] = None
    oldest_period: Optional[str] = None
    trend: Trend = Field(default_factory=Trend.no_data)

    @model_validator(mode="after")
    def _check_consistency(self) -> "StatisticsSnapshot":
        if self.total_entries == 0:
            numbers = (self.average, self.min_value, self.max_value, self.median,
                       self.variance, self.standard_deviation, self.latest_value)
            if any(number is not None for number in numbers):
                raise ValueError("Empty statistics must not carry values")
        if self.min_value is not None and self.max_value is not None and self.min_value > self.max_value:
            raise ValueError("min_value must not exceed max_value")
        if self.variance is not None and self.variance < 0:
            raise ValueError("variance must not be negative")
        if self.standard_deviation is not None and self.standard_deviation < 0:
            raise ValueError("standard_deviation must not be negative")
        return self

    @classmethod
    def empty(cls) -> "StatisticsSnapshot":
        return cls(total_entries=0)

    @property
    def has_data(self) -> bool:
        return self.total_entries > 0

    @property
    def has_advanced_metrics(self) -> bool:
        return self.variance is not None and self.standard_deviation is not None

    @property
    def value_range(self) -> Optional[float]:
        if self.min_value is None or self.max_value is None:
            return None
        return self.max_value - self.min_value

    @property
    def coefficient_of_variation(self) -> Optional[float]:
        if self.standard_deviation is None or not self.average:
            return None
        return abs(self.standard_deviation / self.average)

    @property
    def has_good_data_quality(self) -> bool:
        return self.total_entries >= 5 and not self.trend.is_no_data

    @property
    def stability_rating(self) -> str:
        cv = self.coefficient_of_variation
        if cv is None:
            return "unknown"
        if cv <= 0.1:
            return "very_stable"
        if cv <= 0.2:
            return "stable"
        if cv <= 0.5:
            return "moderate"
        return "volatile"

    def compare_with(self, other: "StatisticsSnapshot") -> Dict[str, Any]:
        def diff(a: Optional[float], b: Optional[float]) -> Optional[float]:
            return None if a is None or b is None else a - b

        return {
            "entries_diff": self.total_entries - other.total_entries,
            "average_diff": diff(self.average, other.average),
            "min_diff": diff(self.min_value, other.min_value),
            "max_diff": diff(self.max_value, other.max_value),
            "trend_comparison": self.trend.compare_with(other.trend),
        }


class Outlier(BaseModel):
    index: int
    value: float
    period: Optional[str] = None
    z_score: float
    deviation: float


class CorrelationResult(BaseModel):
    coefficient: Optional[float] = None
    strength: CorrelationStrength
    paired_data_points: int
    relationship: Optional[Relationship] = None


class ConfidenceInterval(BaseModel):
    lower: float
    upper: float


class ForecastPoint(BaseModel):
    period: int
    predicted_value: float
    confidence_interval: ConfidenceInterval


class ForecastResult(BaseModel):
    status: ForecastStatus
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    trend_direction: Optional[str] = None
    slope: Optional[float] = None
    intercept: Optional[float] = None
    forecasts: List[ForecastPoint] = Field(default_factory=list)


class BenchmarkResult(BaseModel):
    status: str
    benchmark_period: Optional[int] = None
    data_points: int = 0
    performance_targets: Dict[str, float] = Field(default_factory=dict)
    baseline: Optional[StatisticsSnapshot] = None


class TargetPerformance(BaseModel):
    target: Optional[float] = None
    latest_value: Optional[float] = None
    delta: float = 0.0
    delta_percent: float = 0.0
    achieved: Optional[bool] = None
