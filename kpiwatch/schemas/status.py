from pydantic import BaseModel

from kpiwatch.models.enums import Status
from kpiwatch.models.kpi import KPI


class StatusSummary(BaseModel):
    """Status distribution over a collection of KPIs."""
    overall_status: Status
    total_kpis: int
    green_count: int = 0
    yellow_count: int = 0
    red_count: int = 0
    green_percentage: float = 0.0
    critical_percentage: float = 0.0


class KPIPriority(BaseModel):
    kpi: KPI
    status: Status
    priority: int
