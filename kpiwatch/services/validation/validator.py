"""Structural and plausibility checks for KPIs and KPI values."""
import math
import statistics
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from kpiwatch.core import constants
from kpiwatch.core.logging import get_logger
from kpiwatch.models.enums import Interval
from kpiwatch.models.kpi import KPI, KPIValue
from kpiwatch.schemas.validation import (
    AlternativeAction,
    BulkValidationResult,
    BulkValidationStatistics,
    DeletionValidationResult,
    ValidationResult,
)
from kpiwatch.services.calendar.periods import Period, align_timezone, canonical_period
from kpiwatch.services.lookup.adapters import ValueLookup

logger = get_logger(__name__)

NEGATIVE_ALLOWED_KEYWORDS = ["gewinn", "verlust", "änderung", "delta", "change", "profit", "loss"]
CRITICAL_NAME_KEYWORDS = ["umsatz", "gewinn", "verlust", "kosten", "revenue"]
ZERO_SUSPICIOUS_KEYWORDS = ["umsatz", "gewinn", "revenue", "profit"]
PERCENTAGE_KEYWORDS = ["prozent", "percent", "%"]

RECENT_VALUES_WINDOW = 5


def _contains_any(text: str, keywords: Sequence[str]) -> bool:
    return any(keyword in text for keyword in keywords)


class KPIValidator:
    """Validates KPIs and values before they are written; problems come back as data."""

    def __init__(self, lookup: Optional[ValueLookup] = None):
        self.lookup = lookup

    def validate_kpi(self, kpi: KPI, context: Optional[Dict[str, Any]] = None) -> ValidationResult:
        """
        Validate a KPI definition.

        Args:
            kpi: KPI to validate
            context: Optional flags; ``allow_negative_targets``, ``is_update``
                with ``original_kpi``, and ``value_count`` when no lookup is set

        Returns:
            ValidationResult with errors and warnings
        """
        context = context or {}
        errors: List[str] = []
        warnings: List[str] = []

        name = (kpi.name or "").strip()
        if not name:
            errors.append("KPI-Name ist erforderlich.")
        elif len(name) < constants.MIN_KPI_NAME_LENGTH:
            errors.append(f"KPI-Name muss mindestens {constants.MIN_KPI_NAME_LENGTH} Zeichen lang sein.")
        elif len(name) > constants.MAX_KPI_NAME_LENGTH:
            errors.append(f"Der KPI-Name darf maximal {constants.MAX_KPI_NAME_LENGTH} Zeichen lang sein.")

        if kpi.interval is None:
            errors.append("Ungültiges Intervall gewählt.")

        if kpi.owner is None:
            errors.append("KPI muss einem Benutzer zugeordnet sein.")

        lowered = name.lower()
        if kpi.target is not None:
            negative_allowed = context.get("allow_negative_targets", False) or _contains_any(lowered, NEGATIVE_ALLOWED_KEYWORDS)
            if kpi.target < 0 and not negative_allowed:
                errors.append("Zielwert sollte positiv sein.")
            if abs(kpi.target) > constants.MAX_VALUE_MAGNITUDE:
                warnings.append("Sehr großer Zielwert - bitte Einheit prüfen")

        warnings.extend(self._business_rule_warnings(lowered, kpi.interval))

        if context.get("is_update"):
            update_errors, update_warnings = self._update_consistency(kpi, context)
            errors.extend(update_errors)
            warnings.extend(update_warnings)

        return ValidationResult(errors=errors, warnings=warnings)

    def _business_rule_warnings(self, lowered_name: str, interval: Optional[Interval]) -> List[str]:
        warnings = []

        if interval is Interval.WEEKLY and "jahres" in lowered_name:
            warnings.append("Wöchentliches Intervall bei jährlicher KPI könnte ungeeignet sein")
        if interval is Interval.QUARTERLY and "täglich" in lowered_name:
            warnings.append("Quartalsintervall bei täglicher KPI könnte ungeeignet sein")

        if _contains_any(lowered_name, CRITICAL_NAME_KEYWORDS):
            warnings.append("Kritische KPI erkannt - besondere Sorgfalt bei der Datenpflege erforderlich")

        return warnings

    def _update_consistency(self, kpi: KPI, context: Dict[str, Any]):
        errors: List[str] = []
        warnings: List[str] = []

        original: Optional[KPI] = context.get("original_kpi")
        if original is None:
            return errors, warnings

        if kpi.interval != original.interval and self._count_values(kpi, context) > 0:
            warnings.append("Intervall-Änderung bei vorhandenen Werten - Datenintegrität prüfen")

        original_owner = original.owner.id if original.owner else None
        owner = kpi.owner.id if kpi.owner else None
        if owner != original_owner:
            errors.append("KPI-Besitzer kann nicht geändert werden")

        return errors, warnings

    def validate_kpi_deletion(
        self,
        kpi: KPI,
        context: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> DeletionValidationResult:
        """
        Check whether a KPI may be deleted.

        Args:
            kpi: KPI about to be deleted
            context: ``force_delete`` allows deleting critical KPIs;
                ``value_count`` when no lookup is set
            now: Reference instant for the age rule

        Returns:
            DeletionValidationResult with the number of affected values and
            alternatives (archive, export)
        """
        context = context or {}
        errors: List[str] = []
        warnings: List[str] = []

        value_count = self._count_values(kpi, context)
        if value_count > 0:
            errors.append(f"KPI kann nicht gelöscht werden: KPI hat {value_count} zugehörige Werte")
            warnings.append(f"Löschung würde {value_count} Werte entfernen")

        name = (kpi.name or "").lower()
        if _contains_any(name, constants.DELETION_CRITICAL_KEYWORDS) and not context.get("force_delete", False):
            errors.append("Kritische KPI kann nicht ohne explizite Berechtigung gelöscht werden")

        if kpi.created_at is not None:
            now = align_timezone(now or datetime.now(), kpi.created_at)
            if kpi.created_at < now - timedelta(days=constants.DELETION_AGE_WARNING_DAYS):
                warnings.append(
                    f"KPI ist älter als {constants.DELETION_AGE_WARNING_DAYS} Tage - "
                    "Löschung könnte historische Auswertungen beeinträchtigen"
                )

        actions = []
        if value_count > constants.ARCHIVE_RECOMMENDATION_MIN_VALUES:
            warnings.append("Empfehlung: Archivierung statt Löschung für historische Datenintegrität")
            actions.append(AlternativeAction(
                type="archive",
                label="KPI archivieren",
                description="KPI deaktivieren aber Daten behalten",
            ))
        actions.append(AlternativeAction(
            type="export",
            label="Daten exportieren",
            description="KPI-Daten vor Löschung sichern",
        ))

        if errors:
            logger.info(f"Deletion of KPI '{kpi.name}' blocked: {errors}")

        return DeletionValidationResult(
            errors=errors,
            warnings=warnings,
            affected_records=value_count,
            alternative_actions=actions,
        )

    def _count_values(self, kpi: KPI, context: Dict[str, Any]) -> int:
        if self.lookup is not None:
            return len(self.lookup.find_all_values(kpi))
        return context.get("value_count", 0)

    def validate_kpi_value(self, kpi_value: KPIValue, context: Optional[Dict[str, Any]] = None) -> ValidationResult:
        """
        Validate a value before it enters the history.

        Args:
            kpi_value: Value to validate
            context: Optional ``recent_values`` (floats, newest first) used
                when no lookup is set, and ``require_evidence``

        Returns:
            ValidationResult including a data-quality score
        """
        context = context or {}
        errors: List[str] = []
        warnings: List[str] = []

        if kpi_value.kpi is None:
            errors.append("KPI-Wert muss einer KPI zugeordnet sein.")

        if not kpi_value.period:
            errors.append("Periode ist erforderlich.")
        elif not Period.is_valid(kpi_value.period):
            errors.append("Ungültiges Zeitraum-Format. Verwenden Sie: YYYY-MM, YYYY-WXX oder YYYY-QX")

        value = kpi_value.value
        if value is None:
            errors.append("Gültiger numerischer Wert erforderlich")
        elif math.isnan(value):
            errors.append("Wert ist ungültig (NaN).")
        elif math.isinf(value):
            errors.append("Wert ist ungültig (Infinity).")
        elif abs(value) > constants.MAX_VALUE_MAGNITUDE:
            errors.append("Wert überschreitet maximal erlaubte Größe")

        comment = kpi_value.comment
        if comment and len(comment) > constants.MAX_VALUE_COMMENT_LENGTH:
            errors.append(f"Kommentar zu lang (max. {constants.MAX_VALUE_COMMENT_LENGTH} Zeichen)")

        if value is not None and math.isfinite(value):
            warnings.extend(self._plausibility_warnings(kpi_value, value, context))

        if not comment and not kpi_value.files and context.get("require_evidence"):
            warnings.append("Keine Kommentare oder Belege - Datenqualität könnte verbessert werden")

        return ValidationResult(
            errors=errors,
            warnings=warnings,
            data_quality_score=self.calculate_data_quality_score(kpi_value),
        )

    def _plausibility_warnings(self, kpi_value: KPIValue, value: float, context: Dict[str, Any]) -> List[str]:
        warnings = []
        kpi = kpi_value.kpi
        name = (kpi.name or "").lower() if kpi else ""

        if value == 0 and _contains_any(name, ZERO_SUSPICIOUS_KEYWORDS):
            warnings.append("Null-Wert bei Umsatz/Gewinn-KPI - bitte prüfen")

        if abs(value) > constants.LARGE_VALUE_WARNING:
            warnings.append("Sehr großer Wert - bitte Einheit und Korrektheit prüfen")

        if kpi is not None and kpi.target:
            deviation = abs((value - kpi.target) / kpi.target) * 100
            if deviation > 100:
                warnings.append(f"Starke Abweichung vom Zielwert ({deviation:.1f}%)")

        if _contains_any(name, PERCENTAGE_KEYWORDS):
            if value > 100:
                warnings.append("Prozentwert über 100% - bitte Korrektheit prüfen")
            if value < 0:
                warnings.append("Negativer Prozentwert - bitte Plausibilität prüfen")

        recent = self._recent_values(kpi_value, context)
        if len(recent) >= 2:
            mean = statistics.fmean(recent)
            if abs(value - mean) > 2 * statistics.pstdev(recent):
                warnings.append("Wert weicht stark von historischen Werten ab - bitte prüfen")

        return warnings

    def _recent_values(self, kpi_value: KPIValue, context: Dict[str, Any]) -> List[float]:
        if "recent_values" in context:
            return [float(v) for v in context["recent_values"]][:RECENT_VALUES_WINDOW]
        if self.lookup is None or kpi_value.kpi is None:
            return []

        period = canonical_period(kpi_value.period)
        history = [
            v.value for v in self.lookup.find_all_values(kpi_value.kpi)
            if v.value is not None and canonical_period(v.period) != period
        ]
        return history[:RECENT_VALUES_WINDOW]

    @staticmethod
    def calculate_data_quality_score(kpi_value: KPIValue) -> float:
        """0.5 for the value itself, 0.25 each for a comment and evidence files."""
        score = 0.5
        if kpi_value.comment:
            score += 0.25
        if kpi_value.files:
            score += 0.25
        return min(1.0, score)

    def validate_bulk(self, kpis: Sequence[KPI], context: Optional[Dict[str, Any]] = None) -> BulkValidationResult:
        """Validate a batch of KPIs, plus constraints across the batch."""
        context = context or {}
        global_errors = []

        name_counts = Counter(kpi.name for kpi in kpis)
        if any(count > 1 for count in name_counts.values()):
            global_errors.append("Doppelte KPI-Namen innerhalb der Bulk-Operation gefunden")

        if len(kpis) > constants.MAX_BULK_KPIS:
            global_errors.append(f"Bulk-Operation zu groß (max. {constants.MAX_BULK_KPIS} KPIs pro Batch)")

        results = {index: self.validate_kpi(kpi, context) for index, kpi in enumerate(kpis)}

        total = len(kpis)
        valid = sum(1 for result in results.values() if result.is_valid)
        with_warnings = sum(1 for result in results.values() if result.has_warnings)

        if global_errors:
            logger.warning(f"Bulk validation of {total} KPIs failed: {global_errors}")

        return BulkValidationResult(
            global_errors=global_errors,
            individual_results=results,
            statistics=BulkValidationStatistics(
                total_kpis=total,
                valid_kpis=valid,
                invalid_kpis=total - valid,
                kpis_with_warnings=with_warnings,
                validation_success_rate=round(valid / total * 100, 1) if total else 0.0,
            ),
        )
