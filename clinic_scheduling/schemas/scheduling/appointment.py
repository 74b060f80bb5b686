# clinic_scheduling/schemas/scheduling/appointment.py
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import date, datetime, time

from ...application.ports.appointments_repo import AppointmentDto, Cancelled, Completed, Missed

MIN_CANCELLATION_DESCRIPTION = 10


class AppointmentCreate(BaseModel):
    patient_id: int
    therapist_id: int
    scheduled_date: date
    scheduled_time: time
    duration_minutes: int = 60
    discipline_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class AppointmentUpdate(BaseModel):
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    duration_minutes: Optional[int] = None
    therapist_id: Optional[int] = None
    discipline_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class AppointmentComplete(BaseModel):
    linked_session_id: Optional[int] = None


class AppointmentCancel(BaseModel):
    reason_type: str
    reason_description: str

    @field_validator('reason_description')
    @classmethod
    def validate_description(cls, v):
        v = v.strip()
        if len(v) < MIN_CANCELLATION_DESCRIPTION:
            raise ValueError(f'Cancellation reason must be at least {MIN_CANCELLATION_DESCRIPTION} characters')
        return v


class AbsenceJustification(BaseModel):
    reason_type: str
    reason_description: str
    missed_by: str

    @field_validator('reason_description')
    @classmethod
    def validate_description(cls, v):
        if not v or not v.strip():
            raise ValueError('Justification description is required')
        return v.strip()


class AppointmentResponse(BaseModel):
    id: int
    clinic_id: int
    patient_id: int
    therapist_id: int
    discipline_id: Optional[int] = None
    scheduled_date: date
    scheduled_time: time
    duration_minutes: int
    status: str
    notes: Optional[str] = None
    recurring_template_id: Optional[int] = None
    detection_source: str
    is_retroactive: bool = False
    completed_at: Optional[datetime] = None
    linked_session_id: Optional[int] = None
    missed_at: Optional[datetime] = None
    justified_at: Optional[datetime] = None
    justified_by: Optional[int] = None
    missed_reason_type: Optional[str] = None
    missed_reason_description: Optional[str] = None
    missed_by: Optional[str] = None
    is_admin_override: bool = False
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    cancellation_reason_type: Optional[str] = None
    cancellation_reason_description: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dto(cls, a: AppointmentDto) -> "AppointmentResponse":
        data = dict(
            id=a.id,
            clinic_id=a.clinic_id,
            patient_id=a.patient_id,
            therapist_id=a.therapist_id,
            discipline_id=a.discipline_id,
            scheduled_date=a.scheduled_date,
            scheduled_time=a.scheduled_time,
            duration_minutes=a.duration_minutes,
            status=a.status.value,
            notes=a.notes,
            recurring_template_id=a.recurring_template_id,
            detection_source=a.detection_source.value,
            is_retroactive=a.is_retroactive,
            created_by=a.created_by,
            created_at=a.created_at,
            updated_at=a.updated_at,
        )
        state = a.state
        if isinstance(state, Completed):
            data.update(completed_at=state.completed_at, linked_session_id=state.linked_session_id)
        elif isinstance(state, Missed):
            data["missed_at"] = state.missed_at
            j = state.justification
            if j is not None:
                data.update(
                    justified_at=j.justified_at,
                    justified_by=j.justified_by,
                    missed_reason_type=j.reason_type.value,
                    missed_reason_description=j.reason_description,
                    missed_by=j.missed_by.value,
                    is_admin_override=a.is_admin_override(),
                )
        elif isinstance(state, Cancelled):
            data.update(
                cancelled_at=state.cancelled_at,
                cancelled_by=state.cancelled_by,
                cancellation_reason_type=state.reason_type.value,
                cancellation_reason_description=state.reason_description,
            )
        return cls(**data)


class BatchFailureResponse(BaseModel):
    item: Any
    kind: str
    reason: str


class ConflictResponse(BaseModel):
    has_conflicts: bool
    conflicts: List[Dict[str, Any]] = []
