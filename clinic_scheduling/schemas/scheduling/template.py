# clinic_scheduling/schemas/scheduling/template.py
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import date, datetime, time

from ...application.ports.templates_repo import TemplateDto
from .appointment import AppointmentResponse, BatchFailureResponse


class TemplateCreate(BaseModel):
    patient_id: int
    therapist_id: int
    recurrence_type: str = "weekly"
    day_of_week: int  # 0 = Sunday
    scheduled_time: time
    duration_minutes: int = 60
    start_date: date
    end_date: Optional[date] = None
    discipline_id: Optional[int] = None
    generate_weeks_ahead: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class ConflictCheckRequest(BaseModel):
    patient_id: int
    therapist_id: int
    recurrence_type: str = "weekly"
    day_of_week: int
    scheduled_time: time
    duration_minutes: int = 60
    start_date: date
    end_date: Optional[date] = None
    weeks_ahead: Optional[int] = None


class GenerateRequest(BaseModel):
    weeks_ahead: Optional[int] = None


class PauseRequest(BaseModel):
    reason: str
    paused_until: Optional[date] = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, v):
        if not v or not v.strip():
            raise ValueError('Pause reason is required')
        return v.strip()


class DeactivateRequest(BaseModel):
    reason: str

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, v):
        if not v or not v.strip():
            raise ValueError('Deactivation reason is required')
        return v.strip()


class SeriesEditRequest(BaseModel):
    from_date: Optional[date] = None
    recurrence_type: Optional[str] = None
    day_of_week: Optional[int] = None
    scheduled_time: Optional[time] = None
    duration_minutes: Optional[int] = None
    end_date: Optional[date] = None
    discipline_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class SeriesDeleteRequest(BaseModel):
    from_date: Optional[date] = None
    deactivate: bool = True
    reason: Optional[str] = None


class TemplateResponse(BaseModel):
    id: int
    clinic_id: int
    patient_id: int
    therapist_id: int
    discipline_id: Optional[int] = None
    recurrence_type: str
    day_of_week: int
    scheduled_time: time
    duration_minutes: int
    start_date: date
    end_date: Optional[date] = None
    generate_weeks_ahead: int
    notes: Optional[str] = None
    status: str
    pause_reason: Optional[str] = None
    paused_at: Optional[datetime] = None
    paused_until: Optional[date] = None
    deactivation_reason: Optional[str] = None
    deactivated_at: Optional[datetime] = None
    deactivated_by: Optional[int] = None
    last_generated_date: Optional[date] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dto(cls, t: TemplateDto, today: date) -> "TemplateResponse":
        pause, deactivation = t.pause, t.deactivation
        return cls(
            id=t.id,
            clinic_id=t.clinic_id,
            patient_id=t.patient_id,
            therapist_id=t.therapist_id,
            discipline_id=t.discipline_id,
            recurrence_type=t.recurrence_type.value,
            day_of_week=t.day_of_week,
            scheduled_time=t.scheduled_time,
            duration_minutes=t.duration_minutes,
            start_date=t.start_date,
            end_date=t.end_date,
            generate_weeks_ahead=t.generate_weeks_ahead,
            notes=t.notes,
            status=t.status_on(today).value,
            pause_reason=pause.reason if pause else None,
            paused_at=pause.paused_at if pause else None,
            paused_until=pause.paused_until if pause else None,
            deactivation_reason=deactivation.reason if deactivation else None,
            deactivated_at=deactivation.deactivated_at if deactivation else None,
            deactivated_by=deactivation.deactivated_by if deactivation else None,
            last_generated_date=t.last_generated_date,
            created_by=t.created_by,
            created_at=t.created_at,
            updated_at=t.updated_at,
        )


class SkippedSlotResponse(BaseModel):
    scheduled_date: date
    scheduled_time: time
    reason: str
    appointment_id: Optional[int] = None
    conflicts: List[Dict[str, Any]] = []


class GenerationResponse(BaseModel):
    template: TemplateResponse
    generated: List[AppointmentResponse] = []
    generated_count: int = 0
    conflicts: List[SkippedSlotResponse] = []
    errors: List[BatchFailureResponse] = []


class SeriesEditResponse(BaseModel):
    template: TemplateResponse
    updated: List[AppointmentResponse] = []
    removed: List[int] = []
    generated: List[AppointmentResponse] = []
    conflicts: List[SkippedSlotResponse] = []
    errors: List[BatchFailureResponse] = []


class SeriesDeleteResponse(BaseModel):
    template: TemplateResponse
    deleted_count: int
    total: int
    errors: List[BatchFailureResponse] = []
