from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from kpiwatch.models.enums import Interval


class Recipient(BaseModel):
    """User owning KPIs and receiving reminders."""
    id: Optional[int] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None  # "Frau", "Herr", "Dr." ...
    is_admin: bool = False

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class KPI(BaseModel):
    """KPI definition. Fields stay permissive so the validator can report problems."""
    id: Optional[int] = None
    name: str = ""
    interval: Optional[Interval] = None
    target: Optional[float] = None
    unit: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None
    owner: Optional[Recipient] = None
    created_at: Optional[datetime] = None


class EvidenceFile(BaseModel):
    """File attached to a KPI value as evidence."""
    filename: str
    original_name: Optional[str] = None
    size: Optional[int] = None


class KPIValue(BaseModel):
    """One measurement of a KPI for one period."""
    id: Optional[int] = None
    kpi: Optional[KPI] = None
    period: Optional[str] = None  # 2024-01, 2024-W05, 2024-Q1
    value: Optional[float] = None
    comment: Optional[str] = None
    files: List[EvidenceFile] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
