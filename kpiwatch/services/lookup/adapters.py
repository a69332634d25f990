from abc import ABC, abstractmethod
from typing import Dict, Hashable, Iterable, List, Optional, Tuple

from kpiwatch.core.logging import get_logger
from kpiwatch.models.kpi import KPI, KPIValue
from kpiwatch.services.calendar.periods import Period, canonical_period

logger = get_logger(__name__)


def kpi_key(kpi: KPI) -> Hashable:
    """Identity used to index values of a KPI."""
    return kpi.id if kpi.id is not None else ("name", kpi.name)


def _period_value(period) -> str:
    return period.value if isinstance(period, Period) else canonical_period(str(period))


class ValueLookup(ABC):
    """Read-only access to stored KPI values."""

    @abstractmethod
    def find_value(self, kpi: KPI, period) -> Optional[KPIValue]:
        """Return the value recorded for ``kpi`` in ``period``, if any."""
        pass

    @abstractmethod
    def find_all_values(self, kpi: KPI) -> List[KPIValue]:
        """Return every value of ``kpi``, newest first."""
        pass


class InMemoryValueLookup(ValueLookup):
    """Lookup over values held in memory, ordered newest first by period."""

    def __init__(self, values: Iterable[KPIValue] = ()):
        self._values: Dict[Hashable, List[KPIValue]] = {}
        for value in values:
            self.add(value)

    def add(self, value: KPIValue) -> None:
        if value.kpi is None:
            logger.warning("Ignoring KPI value without KPI reference")
            return
        bucket = self._values.setdefault(kpi_key(value.kpi), [])
        bucket.append(value)
        bucket.sort(key=_sort_key, reverse=True)

    def find_value(self, kpi: KPI, period) -> Optional[KPIValue]:
        wanted = _period_value(period)
        for value in self._values.get(kpi_key(kpi), []):
            if canonical_period(value.period) == wanted:
                return value
        return None

    def find_all_values(self, kpi: KPI) -> List[KPIValue]:
        return list(self._values.get(kpi_key(kpi), []))


def _sort_key(value: KPIValue) -> Tuple[str, str]:
    created = value.created_at.isoformat() if value.created_at else ""
    return (canonical_period(value.period) or "", created)


class CachedValueLookup(ValueLookup):
    """
    Memoizing wrapper for one evaluation pass.

    Construct a fresh instance per batch; it is never shared between passes,
    so a status computed later always sees the lookup's current data.
    """

    def __init__(self, inner: ValueLookup):
        self.inner = inner
        self._single: Dict[Tuple[Hashable, str], Optional[KPIValue]] = {}
        self._all: Dict[Hashable, List[KPIValue]] = {}
        self.hits = 0

    def find_value(self, kpi: KPI, period) -> Optional[KPIValue]:
        key = (kpi_key(kpi), _period_value(period))
        if key in self._single:
            self.hits += 1
            return self._single[key]
        value = self.inner.find_value(kpi, period)
        self._single[key] = value
        return value

    def find_all_values(self, kpi: KPI) -> List[KPIValue]:
        key = kpi_key(kpi)
        if key not in self._all:
            self._all[key] = self.inner.find_all_values(kpi)
        else:
            self.hits += 1
        return list(self._all[key])
