from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import List, Optional


class RecurrenceType(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    # Fixed 28-day step, not calendar months.
    MONTHLY = "monthly"

    @property
    def step_days(self) -> int:
        return {"weekly": 7, "biweekly": 14, "monthly": 28}[self.value]


class TemplateStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class TemplatePause:
    reason: str
    paused_at: datetime
    paused_until: Optional[date] = None


@dataclass(frozen=True)
class TemplateDeactivation:
    reason: str
    deactivated_at: datetime
    deactivated_by: Optional[int] = None


@dataclass
class TemplateDraft:
    clinic_id: int
    patient_id: int
    therapist_id: int
    recurrence_type: RecurrenceType
    day_of_week: int
    scheduled_time: time
    duration_minutes: int
    start_date: date
    end_date: Optional[date] = None
    discipline_id: Optional[int] = None
    generate_weeks_ahead: int = 4
    notes: Optional[str] = None
    created_by: Optional[int] = None


@dataclass
class TemplateDto:
    id: int
    clinic_id: int
    patient_id: int
    therapist_id: int
    recurrence_type: RecurrenceType
    day_of_week: int
    scheduled_time: time
    duration_minutes: int
    start_date: date
    end_date: Optional[date] = None
    discipline_id: Optional[int] = None
    generate_weeks_ahead: int = 4
    notes: Optional[str] = None
    created_by: Optional[int] = None
    pause: Optional[TemplatePause] = None
    deactivation: Optional[TemplateDeactivation] = None
    last_generated_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def status_on(self, today: date) -> TemplateStatus:
        # Only the deactivation and the pause are stored; the rest is derived.
        if self.deactivation is not None:
            return TemplateStatus.INACTIVE
        if self.pause is not None:
            return TemplateStatus.PAUSED
        if self.end_date is not None and self.end_date < today:
            return TemplateStatus.EXPIRED
        return TemplateStatus.ACTIVE

    def resume_due(self, today: date) -> bool:
        """A pause whose ``paused_until`` has passed may be resumed; it is never resumed implicitly."""
        return (
            self.pause is not None
            and self.pause.paused_until is not None
            and self.pause.paused_until < today
        )


class TemplatesRepository:
    def add(self, draft: TemplateDraft) -> TemplateDto:
        ...

    def get(self, clinic_id: int, template_id: int) -> Optional[TemplateDto]:
        ...

    def list(self, clinic_id: int, patient_id: Optional[int] = None, therapist_id: Optional[int] = None) -> List[TemplateDto]:
        ...

    def save(self, template: TemplateDto) -> TemplateDto:
        ...
