import pytest
from datetime import datetime, timedelta, timezone

from kpiwatch.models.enums import DuplicateType, Interval
from kpiwatch.models.kpi import KPI, EvidenceFile, KPIValue
from kpiwatch.services.lookup.adapters import InMemoryValueLookup
from kpiwatch.services.validation.duplicates import (
    DuplicateDetector,
    levenshtein,
    period_difference_days,
    period_similarity,
)

NOW = datetime(2024, 3, 13, 10, 0)


class TestStringSimilarity:

    def test_levenshtein(self):
        assert levenshtein("kitten", "sitting") == 3
        assert levenshtein("2024-01", "2024-01") == 0
        assert levenshtein("", "abc") == 3

    def test_period_similarity(self):
        assert period_similarity("2024-01", "2024-02") == pytest.approx(1 - 1 / 7)
        assert period_similarity("", "") == 1.0

    def test_period_difference_days(self):
        assert period_difference_days("2024-01", "2024-11") == 305
        assert period_difference_days("2024-01", "garbage") is None


class TestDuplicateDetector:

    @pytest.fixture
    def kpi(self):
        return KPI(id=1, name="Revenue", interval=Interval.MONTHLY)

    @pytest.fixture
    def lookup(self, kpi):
        return InMemoryValueLookup([
            KPIValue(id=1, kpi=kpi, period="2024-01", value=100.0, created_at=NOW - timedelta(hours=48)),
            KPIValue(id=2, kpi=kpi, period="2024-02", value=150.0, created_at=NOW - timedelta(hours=2)),
        ])

    @pytest.fixture
    def detector(self, lookup):
        return DuplicateDetector(lookup)

    def test_exact_duplicate(self, detector, kpi):
        result = detector.check_for_duplicate(KPIValue(kpi=kpi, period="2024-02", value=151.0))

        assert result.has_duplicate
        assert result.duplicate_type is DuplicateType.EXACT
        assert result.exact_duplicate.id == 2
        assert [option.type for option in result.override_options] == ["replace", "update", "new_period"]

    def test_fuzzy_period_sorted_by_similarity(self, detector, kpi):
        result = detector.check_for_duplicate(KPIValue(kpi=kpi, period="2024-11", value=999.0))

        assert result.duplicate_type is DuplicateType.FUZZY_PERIOD
        assert [match.value.period for match in result.fuzzy_matches] == ["2024-01", "2024-02"]
        assert result.fuzzy_matches[0].similarity_score > result.fuzzy_matches[1].similarity_score
        assert [option.type for option in result.override_options] == ["new_period"]

    def test_similar_value(self, detector, kpi):
        result = detector.check_for_duplicate(
            KPIValue(kpi=kpi, period="2024-05", value=100.5),
            {"enable_fuzzy_matching": False},
        )

        assert result.duplicate_type is DuplicateType.SIMILAR_VALUE
        assert result.value_similarities[0].value.period == "2024-01"
        assert result.value_similarities[0].numeric_difference == pytest.approx(0.5)

    def test_no_duplicate(self, kpi):
        detector = DuplicateDetector(InMemoryValueLookup())
        result = detector.check_for_duplicate(KPIValue(kpi=kpi, period="2024-05", value=1.0))

        assert not result.has_duplicate
        assert result.duplicate_type is DuplicateType.NONE
        assert result.recommendation == "Keine Duplikate gefunden. Wert kann gespeichert werden."
        assert result.override_options == []

    def test_recent_value_can_be_overridden(self, detector, lookup, kpi):
        existing = lookup.find_value(kpi, "2024-02")
        decision = detector.can_override(existing, KPIValue(kpi=kpi, period="2024-02", value=160.0), NOW)

        assert decision.can_override
        assert decision.confidence == 1.0
        assert "Überschreibung ist technisch möglich" in decision.recommendations

    def test_old_value_needs_permission(self, detector, lookup, kpi):
        existing = lookup.find_value(kpi, "2024-01")
        new = KPIValue(kpi=kpi, period="2024-01", value=105.0)

        denied = detector.can_override(existing, new, NOW)
        granted = detector.can_override(existing, new, NOW, authorize=lambda value: True)

        assert not denied.can_override
        assert denied.audit_info["hours_since_creation"] == 48
        assert granted.can_override

    def test_large_change_halves_confidence(self, detector, lookup, kpi):
        existing = lookup.find_value(kpi, "2024-02")
        decision = detector.can_override(existing, KPIValue(kpi=kpi, period="2024-02", value=300.0), NOW)

        assert decision.can_override
        assert decision.confidence == 0.5
        assert decision.audit_info["percentage_change"] == 100.0

    def test_other_kpi_is_denied(self, detector, lookup, kpi):
        existing = lookup.find_value(kpi, "2024-02")
        other = KPI(id=2, name="Costs", interval=Interval.MONTHLY)

        decision = detector.can_override(existing, KPIValue(kpi=other, period="2024-02", value=150.0), NOW)

        assert not decision.can_override
        assert "Wert gehört zu einer anderen KPI" in decision.reasons

    def test_quality_factor_is_capped(self, detector, lookup, kpi):
        existing = lookup.find_value(kpi, "2024-02")
        new = KPIValue(
            kpi=kpi,
            period="2024-02",
            value=150.0,
            comment="Korrigiert",
            files=[EvidenceFile(filename="beleg.pdf")],
        )

        decision = detector.can_override(existing, new, NOW)

        assert decision.confidence == 1.0
        assert decision.audit_info["quality_score"] == pytest.approx(1.32)

    def test_aware_creation_time_with_default_now(self, detector, kpi):
        recent = KPIValue(kpi=kpi, period="2024-02", value=100.0, created_at=datetime.now(timezone.utc) - timedelta(hours=1))
        old = KPIValue(kpi=kpi, period="2024-01", value=100.0, created_at=datetime.now(timezone.utc) - timedelta(hours=30))
        new = KPIValue(kpi=kpi, period="2024-02", value=101.0)

        allowed = detector.can_override(recent, new)
        denied = detector.can_override(old, new)

        assert allowed.can_override
        assert allowed.audit_info["hours_since_creation"] == pytest.approx(1.0, abs=0.1)
        assert not denied.can_override

    def test_unpadded_period_is_exact_duplicate(self, detector, kpi):
        result = detector.check_for_duplicate(KPIValue(kpi=kpi, period="2024-2", value=151.0))

        assert result.duplicate_type is DuplicateType.EXACT
        assert result.exact_duplicate.id == 2
        assert [match.value.period for match in result.fuzzy_matches] == ["2024-01"]

    def test_find_conflicting_values(self, detector, kpi):
        exact_only = detector.find_conflicting_values(kpi, "2024-02")
        with_fuzzy = detector.find_conflicting_values(kpi, "2024-02", include_fuzzy=True)

        assert [match.conflict_type for match in exact_only] == ["exact_period"]
        assert [match.value.period for match in with_fuzzy] == ["2024-02", "2024-01"]

    def test_conflicts_are_capped(self, kpi):
        lookup = InMemoryValueLookup([
            KPIValue(kpi=kpi, period=f"2024-{month:02d}", value=float(month)) for month in range(1, 13)
        ])

        conflicts = DuplicateDetector(lookup).find_conflicting_values(kpi, "2024-05", include_fuzzy=True)

        assert len(conflicts) == 10
        assert conflicts[0].conflict_type == "exact_period"

    def test_patterns_need_two_values(self, kpi):
        lookup = InMemoryValueLookup([KPIValue(kpi=kpi, period="2024-01", value=1.0)])
        patterns = DuplicateDetector(lookup).analyze_duplicate_patterns(kpi)

        assert patterns.status == "insufficient_data"

    def test_duplicate_patterns(self, kpi):
        lookup = InMemoryValueLookup([
            KPIValue(kpi=kpi, period="2024-01", value=100.0),
            KPIValue(kpi=kpi, period="2024-02", value=100.5),
        ])

        patterns = DuplicateDetector(lookup).analyze_duplicate_patterns(kpi)

        assert patterns.total_values == 2
        assert patterns.exact_duplicates == 0
        assert patterns.fuzzy_matches == 2
        assert patterns.value_duplicates == 2
        assert patterns.duplicate_rate == 100.0
        assert "Hohe Duplikatrate erkannt. Prüfen Sie Ihre Eingabeprozesse" in patterns.recommendations
