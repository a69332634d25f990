import pytest
from datetime import datetime
from unittest.mock import MagicMock

from kpiwatch.models.enums import Interval
from kpiwatch.models.kpi import KPI, KPIValue
from kpiwatch.services.calendar.periods import Period
from kpiwatch.services.lookup.adapters import CachedValueLookup, InMemoryValueLookup, kpi_key


class TestInMemoryValueLookup:

    @pytest.fixture
    def kpi(self):
        return KPI(id=1, name="Revenue", interval=Interval.MONTHLY)

    @pytest.fixture
    def lookup(self, kpi):
        return InMemoryValueLookup([
            KPIValue(id=1, kpi=kpi, period="2024-01", value=100.0),
            KPIValue(id=3, kpi=kpi, period="2024-03", value=120.0),
            KPIValue(id=2, kpi=kpi, period="2024-02", value=110.0),
        ])

    def test_find_value_by_string_and_period(self, lookup, kpi):
        assert lookup.find_value(kpi, "2024-02").value == 110.0
        assert lookup.find_value(kpi, Period.parse("2024-03")).value == 120.0
        assert lookup.find_value(kpi, "2024-04") is None

    def test_find_all_values_newest_first(self, lookup, kpi):
        periods = [value.period for value in lookup.find_all_values(kpi)]
        assert periods == ["2024-03", "2024-02", "2024-01"]

    def test_unknown_kpi_has_no_values(self, lookup):
        assert lookup.find_all_values(KPI(id=99, name="Other")) == []

    def test_values_without_kpi_are_ignored(self):
        lookup = InMemoryValueLookup([KPIValue(period="2024-01", value=1.0)])
        assert lookup._values == {}

    def test_kpi_key_falls_back_to_name(self):
        assert kpi_key(KPI(id=7, name="A")) == 7
        assert kpi_key(KPI(name="A")) == ("name", "A")


class TestCachedValueLookup:

    def test_repeated_lookups_hit_cache(self):
        kpi = KPI(id=1, name="Revenue", interval=Interval.MONTHLY)
        inner = MagicMock()
        inner.find_value.return_value = None
        inner.find_all_values.return_value = [KPIValue(kpi=kpi, period="2024-01", value=1.0)]

        cached = CachedValueLookup(inner)
        cached.find_value(kpi, "2024-01")
        cached.find_value(kpi, Period.parse("2024-01"))
        cached.find_all_values(kpi)
        cached.find_all_values(kpi)

        assert inner.find_value.call_count == 1
        assert inner.find_all_values.call_count == 1
        assert cached.hits == 2

    def test_fresh_instance_sees_new_data(self):
        kpi = KPI(id=1, name="Revenue", interval=Interval.MONTHLY)
        store = InMemoryValueLookup()

        first_pass = CachedValueLookup(store)
        assert first_pass.find_value(kpi, "2024-01") is None

        store.add(KPIValue(kpi=kpi, period="2024-01", value=5.0, created_at=datetime(2024, 1, 31)))

        assert first_pass.find_value(kpi, "2024-01") is None
        assert CachedValueLookup(store).find_value(kpi, "2024-01").value == 5.0


class TestPeriodNormalization:

    @pytest.fixture
    def kpi(self):
        return KPI(id=1, name="Tickets", interval=Interval.MONTHLY)

    def test_unpadded_period_is_found(self, kpi):
        lookup = InMemoryValueLookup([KPIValue(kpi=kpi, period="2024-3", value=7.0)])

        assert lookup.find_value(kpi, "2024-03").value == 7.0
        assert lookup.find_value(kpi, Period.parse("2024-03")).value == 7.0
        assert lookup.find_value(kpi, "2024-3").value == 7.0

    def test_unpadded_periods_sort_newest_first(self, kpi):
        lookup = InMemoryValueLookup([
            KPIValue(kpi=kpi, period="2024-9", value=9.0),
            KPIValue(kpi=kpi, period="2024-10", value=10.0),
            KPIValue(kpi=kpi, period="2024-8", value=8.0),
        ])

        assert [value.value for value in lookup.find_all_values(kpi)] == [10.0, 9.0, 8.0]
