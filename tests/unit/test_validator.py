import pytest
from datetime import datetime, timedelta, timezone

from kpiwatch.models.enums import Interval, Severity
from kpiwatch.models.kpi import KPI, EvidenceFile, KPIValue, Recipient
from kpiwatch.services.lookup.adapters import InMemoryValueLookup
from kpiwatch.services.validation.validator import KPIValidator


@pytest.fixture
def owner():
    return Recipient(id=1, email="anna@example.com", first_name="Anna")


@pytest.fixture
def validator():
    return KPIValidator()


class TestKPIValidation:

    def test_valid_kpi(self, validator, owner):
        result = validator.validate_kpi(KPI(id=1, name="Tickets", interval=Interval.WEEKLY, owner=owner, target=10))

        assert result.is_valid
        assert not result.has_warnings
        assert result.severity is Severity.INFO

    def test_missing_fields(self, validator):
        result = validator.validate_kpi(KPI(name=""))

        assert not result.is_valid
        assert result.severity is Severity.ERROR
        assert "KPI-Name ist erforderlich." in result.errors
        assert "Ungültiges Intervall gewählt." in result.errors
        assert "KPI muss einem Benutzer zugeordnet sein." in result.errors

    def test_name_length(self, validator, owner):
        short = validator.validate_kpi(KPI(name="AB", interval=Interval.MONTHLY, owner=owner))
        long = validator.validate_kpi(KPI(name="x" * 256, interval=Interval.MONTHLY, owner=owner))

        assert not short.is_valid
        assert not long.is_valid

    def test_negative_target(self, validator, owner):
        plain = KPI(name="Tickets", interval=Interval.MONTHLY, owner=owner, target=-5)
        delta = KPI(name="Headcount delta", interval=Interval.MONTHLY, owner=owner, target=-5)

        assert "Zielwert sollte positiv sein." in validator.validate_kpi(plain).errors
        assert validator.validate_kpi(delta).is_valid
        assert validator.validate_kpi(plain, {"allow_negative_targets": True}).is_valid

    def test_huge_target_warns(self, validator, owner):
        result = validator.validate_kpi(KPI(name="Tickets", interval=Interval.MONTHLY, owner=owner, target=2e9))

        assert result.is_valid
        assert result.severity is Severity.WARNING

    def test_critical_name_and_interval_mismatch_warn(self, validator, owner):
        result = validator.validate_kpi(KPI(name="Jahresumsatz", interval=Interval.WEEKLY, owner=owner))

        assert result.is_valid
        assert len(result.warnings) == 2

    def test_update_consistency(self, validator, owner):
        original = KPI(id=1, name="Tickets", interval=Interval.MONTHLY, owner=owner)
        changed = KPI(id=1, name="Tickets", interval=Interval.WEEKLY, owner=Recipient(id=2))

        result = validator.validate_kpi(changed, {"is_update": True, "original_kpi": original, "value_count": 3})

        assert "KPI-Besitzer kann nicht geändert werden" in result.errors
        assert "Intervall-Änderung bei vorhandenen Werten - Datenintegrität prüfen" in result.warnings

    def test_interval_change_without_values(self, owner):
        original = KPI(id=1, name="Tickets", interval=Interval.MONTHLY, owner=owner)
        changed = KPI(id=1, name="Tickets", interval=Interval.WEEKLY, owner=owner)
        validator = KPIValidator(InMemoryValueLookup())

        result = validator.validate_kpi(changed, {"is_update": True, "original_kpi": original})

        assert result.is_valid
        assert not result.has_warnings


class TestValueValidation:

    @pytest.fixture
    def kpi(self, owner):
        return KPI(id=1, name="Tickets", interval=Interval.MONTHLY, owner=owner)

    def test_valid_value(self, validator, kpi):
        result = validator.validate_kpi_value(KPIValue(kpi=kpi, period="2024-03", value=12))

        assert result.is_valid
        assert result.data_quality_score == 0.5

    def test_structural_errors(self, validator):
        result = validator.validate_kpi_value(KPIValue(period=None, value=None))

        assert "KPI-Wert muss einer KPI zugeordnet sein." in result.errors
        assert "Periode ist erforderlich." in result.errors
        assert "Gültiger numerischer Wert erforderlich" in result.errors

    def test_unpadded_period_is_accepted(self, validator, kpi):
        assert validator.validate_kpi_value(KPIValue(kpi=kpi, period="2024-3", value=1)).is_valid

    def test_bad_period_format(self, validator, kpi):
        result = validator.validate_kpi_value(KPIValue(kpi=kpi, period="2024-13", value=1))
        assert not result.is_valid

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), 1e12])
    def test_invalid_numbers(self, validator, kpi, value):
        assert not validator.validate_kpi_value(KPIValue(kpi=kpi, period="2024-03", value=value)).is_valid

    def test_comment_too_long(self, validator, kpi):
        result = validator.validate_kpi_value(KPIValue(kpi=kpi, period="2024-03", value=1, comment="x" * 1001))
        assert not result.is_valid

    def test_zero_revenue_warns(self, validator, owner):
        revenue = KPI(id=2, name="Umsatz", interval=Interval.MONTHLY, owner=owner)
        result = validator.validate_kpi_value(KPIValue(kpi=revenue, period="2024-03", value=0))

        assert result.is_valid
        assert "Null-Wert bei Umsatz/Gewinn-KPI - bitte prüfen" in result.warnings

    def test_large_value_and_target_deviation_warn(self, validator, owner):
        kpi = KPI(id=2, name="Tickets", interval=Interval.MONTHLY, owner=owner, target=100)
        result = validator.validate_kpi_value(KPIValue(kpi=kpi, period="2024-03", value=2_000_000))

        assert result.is_valid
        assert len(result.warnings) == 2

    def test_percentage_range(self, validator, owner):
        kpi = KPI(id=3, name="Quote in Prozent", interval=Interval.MONTHLY, owner=owner)

        above = validator.validate_kpi_value(KPIValue(kpi=kpi, period="2024-03", value=120))
        below = validator.validate_kpi_value(KPIValue(kpi=kpi, period="2024-03", value=-1))

        assert "Prozentwert über 100% - bitte Korrektheit prüfen" in above.warnings
        assert "Negativer Prozentwert - bitte Plausibilität prüfen" in below.warnings

    def test_deviation_from_history_warns(self, kpi):
        history = [
            KPIValue(kpi=kpi, period=f"2024-0{month}", value=value, created_at=datetime(2024, month, 28))
            for month, value in [(1, 100), (2, 102), (3, 98), (4, 101), (5, 99)]
        ]
        validator = KPIValidator(InMemoryValueLookup(history))

        outlier = validator.validate_kpi_value(KPIValue(kpi=kpi, period="2024-06", value=200))
        normal = validator.validate_kpi_value(KPIValue(kpi=kpi, period="2024-06", value=100))

        assert "Wert weicht stark von historischen Werten ab - bitte prüfen" in outlier.warnings
        assert normal.warnings == []

    def test_recent_values_from_context(self, validator, kpi):
        result = validator.validate_kpi_value(
            KPIValue(kpi=kpi, period="2024-06", value=500),
            {"recent_values": [10, 12, 11]},
        )
        assert result.has_warnings

    def test_data_quality_score(self, validator, kpi):
        value = KPIValue(
            kpi=kpi,
            period="2024-03",
            value=1,
            comment="Aus dem CRM-Export",
            files=[EvidenceFile(filename="export.xlsx")],
        )
        assert validator.validate_kpi_value(value).data_quality_score == 1.0


class TestBulkValidation:

    def test_duplicate_names(self, validator, owner):
        kpis = [
            KPI(name="Tickets", interval=Interval.MONTHLY, owner=owner),
            KPI(name="Tickets", interval=Interval.MONTHLY, owner=owner),
            KPI(name="AB", interval=Interval.MONTHLY, owner=owner),
        ]

        result = validator.validate_bulk(kpis)

        assert not result.global_valid
        assert result.statistics.total_kpis == 3
        assert result.statistics.valid_kpis == 2
        assert result.statistics.validation_success_rate == 66.7
        assert not result.individual_results[2].is_valid

    def test_batch_size_limit(self, validator, owner):
        kpis = [KPI(name=f"KPI {index}", interval=Interval.MONTHLY, owner=owner) for index in range(101)]

        result = validator.validate_bulk(kpis)

        assert result.global_errors == ["Bulk-Operation zu groß (max. 100 KPIs pro Batch)"]

    def test_empty_batch(self, validator):
        result = validator.validate_bulk([])

        assert result.global_valid
        assert result.statistics.validation_success_rate == 0.0


class TestDeletionValidation:

    NOW = datetime(2024, 3, 13, 10, 0)

    def make_values(self, kpi, count):
        return [KPIValue(kpi=kpi, period=f"{2020 + index // 12}-{index % 12 + 1:02d}", value=1.0) for index in range(count)]

    def test_kpi_without_values_can_be_deleted(self, owner):
        kpi = KPI(id=1, name="Tickets", interval=Interval.MONTHLY, owner=owner, created_at=self.NOW - timedelta(days=5))
        result = KPIValidator(InMemoryValueLookup()).validate_kpi_deletion(kpi, now=self.NOW)

        assert result.is_valid
        assert result.affected_records == 0
        assert not result.has_warnings
        assert [action.type for action in result.alternative_actions] == ["export"]

    def test_values_block_deletion_and_recommend_archiving(self, owner):
        kpi = KPI(id=1, name="Tickets", interval=Interval.MONTHLY, owner=owner)
        validator = KPIValidator(InMemoryValueLookup(self.make_values(kpi, 12)))

        result = validator.validate_kpi_deletion(kpi, now=self.NOW)

        assert not result.is_valid
        assert result.affected_records == 12
        assert "KPI kann nicht gelöscht werden: KPI hat 12 zugehörige Werte" in result.errors
        assert "Empfehlung: Archivierung statt Löschung für historische Datenintegrität" in result.warnings
        assert [action.type for action in result.alternative_actions] == ["archive", "export"]

    def test_few_values_do_not_recommend_archiving(self, owner):
        kpi = KPI(id=1, name="Tickets", interval=Interval.MONTHLY, owner=owner)
        result = KPIValidator().validate_kpi_deletion(kpi, {"value_count": 3}, now=self.NOW)

        assert result.affected_records == 3
        assert "Löschung würde 3 Werte entfernen" in result.warnings
        assert [action.type for action in result.alternative_actions] == ["export"]

    def test_critical_kpi_needs_force_delete(self, owner):
        kpi = KPI(id=1, name="Monatsumsatz", interval=Interval.MONTHLY, owner=owner)
        validator = KPIValidator(InMemoryValueLookup())

        assert not validator.validate_kpi_deletion(kpi, now=self.NOW).is_valid
        assert validator.validate_kpi_deletion(kpi, {"force_delete": True}, now=self.NOW).is_valid

    def test_old_kpi_warns(self, owner):
        created = datetime(2023, 1, 1, tzinfo=timezone.utc)
        kpi = KPI(id=1, name="Tickets", interval=Interval.MONTHLY, owner=owner, created_at=created)

        result = KPIValidator(InMemoryValueLookup()).validate_kpi_deletion(kpi, now=self.NOW)

        assert result.is_valid
        assert len(result.warnings) == 1
