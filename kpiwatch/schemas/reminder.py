from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from kpiwatch.models.enums import NotifyRole, ReminderCategory, UrgencyLabel
from kpiwatch.models.kpi import KPI, Recipient


class Reminder(BaseModel):
    """A KPI that needs a reminder in the current pass. Never persisted."""
    model_config = ConfigDict(frozen=True)

    kpi: KPI
    category: ReminderCategory
    urgency: int = Field(ge=0)
    escalation_level: int = Field(default=0, ge=0)
    days_overdue: int = Field(default=0, ge=0)
    days_until_due: int = 0
    due_date: datetime
    period: str


class ReminderAction(BaseModel):
    action: str
    label: str
    style: str = "secondary"  # primary, secondary, muted
    url: Optional[str] = None
    duration_hours: Optional[int] = None


class ReminderMessage(BaseModel):
    """Rendered reminder content, independent of the transport."""
    title: str
    body: str
    urgency: UrgencyLabel
    type: ReminderCategory
    kpi_id: Optional[int] = None
    actions: List[ReminderAction] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


class EscalationInfo(BaseModel):
    level: int
    urgency: UrgencyLabel
    notify_roles: List[NotifyRole]


class ThrottleDecision(BaseModel):
    send: bool
    reason: str


class ReminderStatistics(BaseModel):
    """Reminder workload over a collection of KPIs."""
    total_kpis: int = 0
    upcoming: int = 0
    due_today: int = 0
    overdue: int = 0
    critical: int = 0
    completed: int = 0
    completion_rate: float = 0.0
    health_score: float = Field(default=100.0, ge=0.0, le=100.0)


class Notification(BaseModel):
    """What a notification sink receives for one reminder."""
    recipient: Optional[Recipient] = None
    reminder: Reminder
    message: ReminderMessage
    escalation: Optional[EscalationInfo] = None
