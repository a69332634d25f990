from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from kpiwatch.models.enums import DuplicateType
from kpiwatch.models.kpi import KPIValue


class DuplicateMatch(BaseModel):
    """A stored value that collides with, or resembles, a new one."""
    value: KPIValue
    conflict_type: str  # exact_period, fuzzy_period, similar_value
    similarity_score: float = Field(ge=0.0, le=1.0)
    period_difference_days: Optional[int] = None
    numeric_difference: Optional[float] = None
    percentage_difference: Optional[float] = None


class OverrideOption(BaseModel):
    type: str  # replace, update, new_period
    label: str
    description: str


class DuplicateCheckResult(BaseModel):
    has_duplicate: bool
    duplicate_type: DuplicateType
    exact_duplicate: Optional[KPIValue] = None
    fuzzy_matches: List[DuplicateMatch] = Field(default_factory=list)
    value_similarities: List[DuplicateMatch] = Field(default_factory=list)
    recommendation: str
    override_options: List[OverrideOption] = Field(default_factory=list)


class OverrideDecision(BaseModel):
    can_override: bool
    confidence: float = Field(ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    audit_info: Dict[str, Any] = Field(default_factory=dict)


class DuplicatePatterns(BaseModel):
    status: str = "analyzed"  # or insufficient_data
    total_values: int = 0
    potential_duplicates: int = 0
    exact_duplicates: int = 0
    fuzzy_matches: int = 0
    value_duplicates: int = 0
    duplicate_rate: float = 0.0
    recommendations: List[str] = Field(default_factory=list)
