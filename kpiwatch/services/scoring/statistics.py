import math
import statistics
from datetime import datetime
from typing import Dict, Hashable, List, Optional, Sequence, Tuple, Union

from kpiwatch.core import constants
from kpiwatch.core.config import get_settings
from kpiwatch.core.logging import get_logger
from kpiwatch.models.enums import CorrelationStrength, ForecastStatus, Relationship
from kpiwatch.models.kpi import KPI, KPIValue
from kpiwatch.schemas.statistics import (
    BenchmarkResult,
    ConfidenceInterval,
    CorrelationResult,
    ForecastPoint,
    ForecastResult,
    Outlier,
    StatisticsSnapshot,
    TargetPerformance,
    Trend,
)
from kpiwatch.services.calendar.periods import align_timezone, canonical_period
from kpiwatch.services.lookup.adapters import ValueLookup, kpi_key

logger = get_logger(__name__)

Measurement = Union[KPIValue, float, int]


class StatisticsEngine:
    """
    Descriptive and predictive statistics over a KPI's value history.

    Every series is newest first (index 0 is the most recent value). Methods
    never raise for short or degenerate series; they return sentinel results
    instead.
    """

    def __init__(self, lookup: Optional[ValueLookup] = None):
        settings = get_settings()
        self.lookup = lookup
        self.outlier_threshold = settings.OUTLIER_Z_THRESHOLD
        self.min_forecast_confidence = settings.FORECAST_MIN_CONFIDENCE

    def calculate_statistics(self, values: Sequence[Measurement]) -> StatisticsSnapshot:
        """
        Summarize a value history.

        Args:
            values: Values or plain numbers, newest first

        Returns:
            Snapshot; variance and standard deviation are only set from two values on
        """
        points = _extract(values)
        if not points:
            return StatisticsSnapshot.empty()

        numbers = [number for number, _ in points]
        count = len(numbers)

        variance = None
        std_dev = None
        if count >= 2:
            variance = statistics.pvariance(numbers)
            std_dev = math.sqrt(variance)

        return StatisticsSnapshot(
            total_entries=count,
            average=round(statistics.fmean(numbers), 2),
            min_value=min(numbers),
            max_value=max(numbers),
            median=statistics.median(numbers),
            variance=variance,
            standard_deviation=std_dev,
            latest_value=numbers[0],
            latest_period=points[0][1],
            oldest_value=numbers[-1],
            oldest_period=points[-1][1],
            trend=self.calculate_trend(numbers),
        )

    def calculate_trend(self, values: Sequence[Measurement]) -> Trend:
        """Percentage change across the three most recent values."""
        numbers = _numbers(values)
        if len(numbers) < constants.MIN_DATA_POINTS_FOR_TREND:
            return Trend.no_data()

        window = numbers[:constants.TREND_WINDOW]
        oldest = window[-1]
        newest = window[0]

        if oldest == 0:
            return Trend.stable(data_points=len(window))

        percentage_change = (newest - oldest) / oldest * 100
        return Trend.from_data(percentage_change, 0.0, len(window))

    def calculate_detailed_trend(
        self,
        values: Sequence[Measurement],
        analysis_window: int = constants.DETAILED_TREND_WINDOW
    ) -> Trend:
        """
        Windowed trend with volatility and confidence.

        Confidence grows with the number of points (saturating at ten) and
        shrinks with the coefficient of variation of the window.
        """
        numbers = _numbers(values)
        window = numbers[:max(analysis_window, 0)]

        if len(window) < constants.MIN_DATA_POINTS_FOR_TREND:
            return Trend.no_data()

        count = len(window)
        oldest = window[-1]
        newest = window[0]
        percentage_change = (newest - oldest) / oldest * 100 if oldest != 0 else 0.0

        mean = statistics.fmean(window)
        volatility = statistics.pstdev(window)

        if volatility == 0:
            relative_volatility = 0.0
        elif mean == 0:
            relative_volatility = 1.0
        else:
            relative_volatility = abs(volatility / mean)

        confidence = min(1.0, (count / 10) * (1 - min(relative_volatility, 1.0)))
        confidence = max(0.0, confidence)

        return Trend.from_data(
            percentage_change=percentage_change,
            volatility=volatility,
            data_points=count,
            confidence=confidence,
            relative_volatility=relative_volatility * 100,
        )

    def detect_outliers(self, values: Sequence[Measurement], threshold: Optional[float] = None) -> List[Outlier]:
        """Values whose z-score exceeds ``threshold``; needs at least three values."""
        threshold = self.outlier_threshold if threshold is None else threshold
        points = _extract(values)

        if len(points) < constants.MIN_DATA_POINTS_FOR_STATISTICS:
            return []

        numbers = [number for number, _ in points]
        std_dev = statistics.pstdev(numbers)
        if std_dev == 0:
            return []

        mean = statistics.fmean(numbers)
        outliers = []

        for index, (number, period) in enumerate(points):
            z_score = abs(number - mean) / std_dev
            if z_score > threshold:
                outliers.append(Outlier(
                    index=index,
                    value=number,
                    period=period,
                    z_score=z_score,
                    deviation=number - mean,
                ))

        return outliers

    def calculate_correlation(self, values_a: Sequence[KPIValue], values_b: Sequence[KPIValue]) -> CorrelationResult:
        """Pearson correlation of two KPIs over the periods both have values for."""
        pairs = _pair_by_period(values_a, values_b)

        if len(pairs) < constants.MIN_DATA_POINTS_FOR_STATISTICS:
            return CorrelationResult(
                coefficient=None,
                strength=CorrelationStrength.INSUFFICIENT_DATA,
                paired_data_points=len(pairs),
            )

        coefficient = _pearson(pairs)

        if coefficient is None:
            relationship = Relationship.NONE
        elif coefficient > 0:
            relationship = Relationship.POSITIVE
        elif coefficient < 0:
            relationship = Relationship.NEGATIVE
        else:
            relationship = Relationship.NONE

        return CorrelationResult(
            coefficient=coefficient,
            strength=interpret_correlation_strength(coefficient),
            paired_data_points=len(pairs),
            relationship=relationship,
        )

    def forecast(self, values: Sequence[Measurement], forecast_periods: int = 3) -> ForecastResult:
        """
        Project future values with a least-squares line.

        The regression runs over the series in chronological order
        (oldest first). The interval around each prediction is a fixed
        ±20 % of the slope, not a statistical interval.
        """
        numbers = _numbers(values)
        if len(numbers) < 3:
            return ForecastResult(status=ForecastStatus.INSUFFICIENT_DATA)

        chronological = list(reversed(numbers))
        slope, intercept, confidence = _linear_regression(chronological)

        if confidence < self.min_forecast_confidence:
            logger.debug(f"Forecast confidence {confidence:.2f} below {self.min_forecast_confidence}")
            return ForecastResult(status=ForecastStatus.LOW_CONFIDENCE, confidence=confidence)

        margin = abs(slope * constants.FORECAST_MARGIN_RATIO)
        last_index = len(chronological)
        forecasts = []

        for step in range(1, forecast_periods + 1):
            predicted = intercept + slope * (last_index + step)
            forecasts.append(ForecastPoint(
                period=step,
                predicted_value=round(predicted, 2),
                confidence_interval=ConfidenceInterval(
                    lower=round(predicted - margin, 2),
                    upper=round(predicted + margin, 2),
                ),
            ))

        return ForecastResult(
            status=ForecastStatus.SUCCESS,
            confidence=confidence,
            trend_direction="increasing" if slope > 0 else "decreasing",
            slope=slope,
            intercept=intercept,
            forecasts=forecasts,
        )

    def create_performance_benchmark(
        self,
        values: Sequence[KPIValue],
        benchmark_months: int = 12,
        now: Optional[datetime] = None
    ) -> BenchmarkResult:
        """Performance tiers derived from the values recorded in the last months."""
        cutoff = _months_before(now or datetime.now(), benchmark_months)
        recent = [
            value for value in values
            if value.created_at is not None and value.created_at >= align_timezone(cutoff, value.created_at)
        ]

        baseline = self.calculate_statistics(recent)
        if not baseline.has_data:
            return BenchmarkResult(status="no_historical_data")

        spread = baseline.standard_deviation or 0.0
        return BenchmarkResult(
            status="success",
            benchmark_period=benchmark_months,
            data_points=baseline.total_entries,
            performance_targets={
                "excellent": baseline.max_value,
                "good": baseline.average + spread,
                "average": baseline.average,
                "below_average": baseline.average - spread,
                "poor": baseline.min_value,
            },
            baseline=baseline,
        )

    def calculate_target_performance(self, values: Sequence[Measurement], target: Optional[float]) -> TargetPerformance:
        """Latest value against the KPI target; a zero or missing target gives a zero delta."""
        numbers = _numbers(values)
        latest = numbers[0] if numbers else None

        if latest is None or not target:
            return TargetPerformance(target=target, latest_value=latest)

        delta = latest - target
        return TargetPerformance(
            target=target,
            latest_value=latest,
            delta=delta,
            delta_percent=delta / abs(target) * 100,
            achieved=latest >= target,
        )

    # Lookup-backed variants

    def calculate_kpi_statistics(self, kpi: KPI) -> StatisticsSnapshot:
        return self.calculate_statistics(self._history(kpi))

    def detect_kpi_outliers(self, kpi: KPI, threshold: Optional[float] = None) -> List[Outlier]:
        return self.detect_outliers(self._history(kpi), threshold)

    def correlate_kpis(self, kpi_a: KPI, kpi_b: KPI) -> CorrelationResult:
        return self.calculate_correlation(self._history(kpi_a), self._history(kpi_b))

    def forecast_kpi(self, kpi: KPI, forecast_periods: int = 3) -> ForecastResult:
        return self.forecast(self._history(kpi), forecast_periods)

    def benchmark_kpi(self, kpi: KPI, benchmark_months: int = 12, now: Optional[datetime] = None) -> BenchmarkResult:
        return self.create_performance_benchmark(self._history(kpi), benchmark_months, now)

    def calculate_bulk_statistics(self, kpis: Sequence[KPI]) -> Dict[Hashable, StatisticsSnapshot]:
        results = {}
        for kpi in kpis:
            results[kpi_key(kpi)] = self.calculate_kpi_statistics(kpi)
        logger.info(f"Calculated statistics for {len(results)} KPIs")
        return results

    def _history(self, kpi: KPI) -> List[KPIValue]:
        if self.lookup is None:
            raise RuntimeError("StatisticsEngine needs a value lookup for KPI-based calls")
        return self.lookup.find_all_values(kpi)


def interpret_correlation_strength(coefficient: Optional[float]) -> CorrelationStrength:
    if coefficient is None:
        return CorrelationStrength.UNKNOWN

    strength = abs(coefficient)
    if strength >= 0.9:
        return CorrelationStrength.VERY_STRONG
    if strength >= 0.7:
        return CorrelationStrength.STRONG
    if strength >= 0.5:
        return CorrelationStrength.MODERATE
    if strength >= 0.3:
        return CorrelationStrength.WEAK
    return CorrelationStrength.VERY_WEAK


def _extract(values: Sequence[Measurement]) -> List[Tuple[float, Optional[str]]]:
    """(number, period) pairs, skipping values without a number."""
    points = []
    for value in values:
        if isinstance(value, KPIValue):
            if value.value is not None:
                points.append((float(value.value), value.period))
        elif value is not None:
            points.append((float(value), None))
    return points


def _numbers(values: Sequence[Measurement]) -> List[float]:
    return [number for number, _ in _extract(values)]


def _pair_by_period(values_a: Sequence[KPIValue], values_b: Sequence[KPIValue]) -> List[Tuple[float, float]]:
    by_period = {}
    for value in values_b:
        if value.period and value.value is not None:
            by_period[canonical_period(value.period)] = float(value.value)

    pairs = []
    for value in values_a:
        period = canonical_period(value.period)
        if period and value.value is not None and period in by_period:
            pairs.append((float(value.value), by_period[period]))
    return pairs


def _pearson(pairs: List[Tuple[float, float]]) -> Optional[float]:
    count = len(pairs)
    x_mean = sum(x for x, _ in pairs) / count
    y_mean = sum(y for _, y in pairs) / count

    numerator = 0.0
    x_squares = 0.0
    y_squares = 0.0
    for x, y in pairs:
        dx = x - x_mean
        dy = y - y_mean
        numerator += dx * dy
        x_squares += dx * dx
        y_squares += dy * dy

    denominator = math.sqrt(x_squares * y_squares)
    if denominator == 0:
        return None
    return max(-1.0, min(1.0, numerator / denominator))


def _linear_regression(series: List[float]) -> Tuple[float, float, float]:
    """Slope, intercept and sqrt(R^2) for y = series over x = 1..n."""
    count = len(series)
    xs = range(1, count + 1)

    sum_x = sum(xs)
    sum_y = sum(series)
    sum_xy = sum(x * y for x, y in zip(xs, series))
    sum_x_squared = sum(x * x for x in xs)

    slope = (count * sum_xy - sum_x * sum_y) / (count * sum_x_squared - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / count

    y_mean = sum_y / count
    total_sum_squares = 0.0
    residual_sum_squares = 0.0
    for x, y in zip(xs, series):
        predicted = slope * x + intercept
        total_sum_squares += (y - y_mean) ** 2
        residual_sum_squares += (y - predicted) ** 2

    r_squared = 1 - residual_sum_squares / total_sum_squares if total_sum_squares > 0 else 0.0
    confidence = min(1.0, math.sqrt(max(r_squared, 0.0)))
    return slope, intercept, confidence


def _months_before(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    # Clamp the day to 28 so every month can hold it
    return moment.replace(year=year, month=month + 1, day=min(moment.day, 28))
