from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from kpiwatch.models.enums import Severity


class ValidationResult(BaseModel):
    """Errors block a write, warnings only inform."""
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    data_quality_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def severity(self) -> Severity:
        if self.errors:
            return Severity.ERROR
        if self.warnings:
            return Severity.WARNING
        return Severity.INFO


class BulkValidationStatistics(BaseModel):
    total_kpis: int = 0
    valid_kpis: int = 0
    invalid_kpis: int = 0
    kpis_with_warnings: int = 0
    validation_success_rate: float = 0.0


class BulkValidationResult(BaseModel):
    global_errors: List[str] = Field(default_factory=list)
    individual_results: Dict[int, ValidationResult] = Field(default_factory=dict)
    statistics: BulkValidationStatistics = Field(default_factory=BulkValidationStatistics)

    @property
    def global_valid(self) -> bool:
        return not self.global_errors


class AlternativeAction(BaseModel):
    type: str  # archive, export
    label: str
    description: str


class DeletionValidationResult(ValidationResult):
    """Outcome of a deletion check; ``is_valid`` means the KPI may be deleted."""
    affected_records: int = 0
    alternative_actions: List[AlternativeAction] = Field(default_factory=list)
