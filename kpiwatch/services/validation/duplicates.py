"""Duplicate detection for KPI values and the policy for overriding stored values."""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from kpiwatch.core import constants
from kpiwatch.core.config import Settings, get_settings
from kpiwatch.core.logging import get_logger
from kpiwatch.models.enums import DuplicateType
from kpiwatch.models.kpi import KPI, KPIValue
from kpiwatch.schemas.duplicates import (
    DuplicateCheckResult,
    DuplicateMatch,
    DuplicatePatterns,
    OverrideDecision,
    OverrideOption,
)
from kpiwatch.services.calendar.periods import Period, align_timezone, canonical_period
from kpiwatch.services.lookup.adapters import ValueLookup, kpi_key

logger = get_logger(__name__)

Authorization = Callable[[KPIValue], bool]

RECOMMENDATIONS = {
    DuplicateType.EXACT: "Ein exaktes Duplikat wurde gefunden. Überschreibung oder Aktualisierung erforderlich.",
    DuplicateType.FUZZY_PERIOD: "Ähnliche Zeiträume gefunden. Bitte prüfen Sie ob dies der korrekte Zeitraum ist.",
    DuplicateType.SIMILAR_VALUE: "Ähnliche Werte in anderen Zeiträumen gefunden. Bitte Wert-Genauigkeit prüfen.",
    DuplicateType.NONE: "Keine Duplikate gefunden. Wert kann gespeichert werden.",
}


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b),
            ))
        previous = current

    return previous[-1]


def period_similarity(a: str, b: str) -> float:
    """1 - distance / longer length; identical strings score 1.0."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / max_len


def period_difference_days(a: str, b: str) -> Optional[int]:
    """Days between the period starts, None if either period is malformed."""
    try:
        return abs((Period.parse(a).start_date() - Period.parse(b).start_date()).days)
    except ValueError:
        return None


class DuplicateDetector:
    """Finds collisions of a new value with the stored history of its KPI."""

    def __init__(self, lookup: ValueLookup, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.lookup = lookup
        self.fuzzy_threshold = settings.FUZZY_PERIOD_SIMILARITY
        self.value_threshold = settings.VALUE_SIMILARITY_THRESHOLD
        self.override_max_age_hours = settings.OVERRIDE_MAX_AGE_HOURS
        self.suspicious_change_percent = settings.SUSPICIOUS_CHANGE_PERCENT

    def _fuzzy_matches(self, period: str, candidates: Sequence[KPIValue]) -> List[DuplicateMatch]:
        matches = []
        for existing in candidates:
            existing_period = canonical_period(existing.period)
            if not existing_period or existing_period == period:
                continue

            similarity = period_similarity(period, existing_period)
            if similarity > self.fuzzy_threshold:
                matches.append(DuplicateMatch(
                    value=existing,
                    conflict_type="fuzzy_period",
                    similarity_score=similarity,
                    period_difference_days=period_difference_days(period, existing_period),
                ))

        matches.sort(key=lambda match: match.similarity_score, reverse=True)
        return matches

    def _value_similarities(self, new_value: KPIValue, candidates: Sequence[KPIValue], threshold: float) -> List[DuplicateMatch]:
        if new_value.value is None:
            return []

        period = canonical_period(new_value.period)
        similarities = []
        scale = max(abs(new_value.value), 1)
        for existing in candidates:
            if existing.value is None or canonical_period(existing.period) == period:
                continue

            difference = abs(existing.value - new_value.value)
            relative = difference / scale
            if relative <= threshold:
                similarities.append(DuplicateMatch(
                    value=existing,
                    conflict_type="similar_value",
                    similarity_score=max(0.0, 1.0 - relative),
                    numeric_difference=difference,
                    percentage_difference=relative * 100,
                ))

        return similarities

    def _check(
        self,
        new_value: KPIValue,
        candidates: Sequence[KPIValue],
        options: Dict[str, Any]
    ) -> DuplicateCheckResult:
        period = canonical_period(new_value.period) or ""
        exact = next((existing for existing in candidates if canonical_period(existing.period) == period), None)

        fuzzy = self._fuzzy_matches(period, candidates) if options.get("enable_fuzzy_matching", True) else []
        similar = []
        if options.get("check_value_similarity", True):
            threshold = options.get("value_similarity_threshold", self.value_threshold)
            similar = self._value_similarities(new_value, candidates, threshold)

        if exact is not None:
            duplicate_type = DuplicateType.EXACT
        elif fuzzy:
            duplicate_type = DuplicateType.FUZZY_PERIOD
        elif similar:
            duplicate_type = DuplicateType.SIMILAR_VALUE
        else:
            duplicate_type = DuplicateType.NONE

        return DuplicateCheckResult(
            has_duplicate=duplicate_type is not DuplicateType.NONE,
            duplicate_type=duplicate_type,
            exact_duplicate=exact,
            fuzzy_matches=fuzzy,
            value_similarities=similar,
            recommendation=RECOMMENDATIONS[duplicate_type],
            override_options=self._override_options(exact is not None, bool(fuzzy)),
        )

    def check_for_duplicate(self, new_value: KPIValue, options: Optional[Dict[str, Any]] = None) -> DuplicateCheckResult:
        """
        Check a new value against the stored history of its KPI.

        Args:
            new_value: Value about to be written
            options: ``enable_fuzzy_matching``, ``check_value_similarity`` and
                ``value_similarity_threshold`` overrides

        Returns:
            DuplicateCheckResult; type is exact, fuzzy_period, similar_value or none
        """
        options = options or {}
        if new_value.kpi is None:
            return self._check(new_value, [], options)

        return self._check(new_value, self.lookup.find_all_values(new_value.kpi), options)

    @staticmethod
    def _override_options(has_exact: bool, has_fuzzy: bool) -> List[OverrideOption]:
        options = []
        if has_exact:
            options.append(OverrideOption(
                type="replace",
                label="Bestehenden Wert ersetzen",
                description="Der neue Wert überschreibt den bestehenden Wert komplett.",
            ))
            options.append(OverrideOption(
                type="update",
                label="Bestehenden Wert aktualisieren",
                description="Nur geänderte Felder werden aktualisiert, Metadaten bleiben erhalten.",
            ))
        if has_fuzzy:
            options.append(OverrideOption(
                type="new_period",
                label="Als neuen Zeitraum speichern",
                description="Wert als separaten Eintrag für den spezifizierten Zeitraum speichern.",
            ))
        return options

    def can_override(
        self,
        existing: KPIValue,
        new: KPIValue,
        now: Optional[datetime] = None,
        authorize: Optional[Authorization] = None,
        suspicious_change_percent: Optional[float] = None
    ) -> OverrideDecision:
        """
        Decide whether ``new`` may replace ``existing``.

        Args:
            existing: Stored value
            new: Replacement candidate
            now: Reference instant for the age rule
            authorize: Grants elevated permission for values past the age limit
            suspicious_change_percent: Change above which confirmation is required

        Returns:
            OverrideDecision with confidence, reasons and audit information
        """
        now = now or datetime.now()
        threshold = self.suspicious_change_percent if suspicious_change_percent is None else suspicious_change_percent
        allowed = True
        confidence = 1.0
        reasons = []
        recommendations = []

        hours_since_creation = 0.0
        if existing.created_at is not None:
            now = align_timezone(now, existing.created_at)
            hours_since_creation = (now - existing.created_at).total_seconds() / 3600

        if hours_since_creation > self.override_max_age_hours:
            if authorize is not None and authorize(existing):
                reasons.append("Überschreibung älterer Werte mit erweiterter Berechtigung")
            else:
                allowed = False
                reasons.append(
                    f"Wert ist älter als {self.override_max_age_hours} Stunden und benötigt spezielle Berechtigung"
                )
                recommendations.append("Kontaktieren Sie einen Administrator für historische Wertänderungen")

        change_magnitude = 0.0
        percentage_change = 0.0
        if existing.value is not None and new.value is not None:
            change_magnitude = abs(new.value - existing.value)
            if existing.value != 0:
                percentage_change = change_magnitude / abs(existing.value) * 100

        if percentage_change > threshold:
            confidence *= 0.5
            reasons.append(f"Große Wertänderung ({percentage_change:.1f}%) erfordert Bestätigung")
            recommendations.append("Fügen Sie einen Kommentar hinzu um die große Wertänderung zu erklären")

        same_kpi = (
            existing.kpi is not None and new.kpi is not None
            and kpi_key(existing.kpi) == kpi_key(new.kpi)
        )
        if not same_kpi:
            allowed = False
            reasons.append("Wert gehört zu einer anderen KPI")
        else:
            recommendations.append("Überschreibung ist technisch möglich")

        quality_score = 1.0
        if new.comment and not existing.comment:
            quality_score *= 1.1
        if new.files and not existing.files:
            quality_score *= 1.2
        confidence *= min(1.0, quality_score)

        if not allowed:
            logger.info(f"Override of value for period {existing.period} denied: {reasons}")

        return OverrideDecision(
            can_override=allowed,
            confidence=confidence,
            reasons=reasons,
            recommendations=recommendations,
            audit_info={
                "existing_created": existing.created_at,
                "existing_updated": existing.updated_at,
                "hours_since_creation": round(hours_since_creation, 2),
                "value_change_magnitude": change_magnitude,
                "percentage_change": round(percentage_change, 2),
                "quality_score": quality_score,
            },
        )

    def find_conflicting_values(self, kpi: KPI, period: str, include_fuzzy: bool = False) -> List[DuplicateMatch]:
        """Stored values colliding with ``period``, best match first, at most ten."""
        period = canonical_period(period)
        conflicts = []

        exact = self.lookup.find_value(kpi, period)
        if exact is not None:
            conflicts.append(DuplicateMatch(value=exact, conflict_type="exact_period", similarity_score=1.0))

        if include_fuzzy:
            conflicts.extend(self._fuzzy_matches(period, self.lookup.find_all_values(kpi)))

        conflicts.sort(key=lambda match: match.similarity_score, reverse=True)
        return conflicts[:constants.MAX_CONFLICTS_TO_RETURN]

    def analyze_duplicate_patterns(self, kpi: KPI) -> DuplicatePatterns:
        """Duplicate statistics over a KPI's history, each value checked against the others."""
        values = self.lookup.find_all_values(kpi)
        if len(values) < 2:
            return DuplicatePatterns(status="insufficient_data", total_values=len(values))

        patterns = DuplicatePatterns(total_values=len(values))
        for index, value in enumerate(values):
            others = values[:index] + values[index + 1:]
            result = self._check(value, others, {"enable_fuzzy_matching": True})
            if not result.has_duplicate:
                continue

            patterns.potential_duplicates += 1
            if result.exact_duplicate is not None:
                patterns.exact_duplicates += 1
            if result.fuzzy_matches:
                patterns.fuzzy_matches += 1
            if result.value_similarities:
                patterns.value_duplicates += 1

        patterns.duplicate_rate = round(patterns.potential_duplicates / patterns.total_values * 100, 1)

        if patterns.duplicate_rate > 20:
            patterns.recommendations.append("Hohe Duplikatrate erkannt. Prüfen Sie Ihre Eingabeprozesse")
        if patterns.fuzzy_matches > 5:
            patterns.recommendations.append("Viele ähnliche Zeiträume gefunden. Standardisieren Sie Zeitraum-Eingaben")
        if patterns.value_duplicates > 3:
            patterns.recommendations.append("Ähnliche Werte in verschiedenen Zeiträumen. Prüfen Sie Wert-Genauigkeit")

        return patterns
