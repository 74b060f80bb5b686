# clinic_scheduling/db/models/scheduling/appointment.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import date, datetime, time


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(index=True)
    patient_id: int = Field(index=True)
    therapist_id: int = Field(index=True)
    discipline_id: Optional[int] = Field(default=None)
    scheduled_date: date = Field(index=True)
    scheduled_time: time
    duration_minutes: int = Field(default=60)
    notes: Optional[str] = Field(default=None)
    recurring_template_id: Optional[int] = Field(default=None, foreign_key="appointment_templates.id", index=True)
    status: str = Field(default="scheduled", max_length=12, index=True)
    detection_source: str = Field(default="manual", max_length=20)
    is_retroactive: bool = Field(default=False)
    created_by: Optional[int] = Field(default=None)

    # completed
    completed_at: Optional[datetime] = Field(default=None)
    linked_session_id: Optional[int] = Field(default=None, index=True)

    # missed (+ justification)
    missed_at: Optional[datetime] = Field(default=None)
    justified_at: Optional[datetime] = Field(default=None)
    justified_by: Optional[int] = Field(default=None)
    missed_reason_type: Optional[str] = Field(default=None, max_length=30)
    missed_reason_description: Optional[str] = Field(default=None)
    missed_by: Optional[str] = Field(default=None, max_length=10)

    # cancelled
    cancelled_at: Optional[datetime] = Field(default=None)
    cancelled_by: Optional[int] = Field(default=None)
    cancellation_reason_type: Optional[str] = Field(default=None, max_length=30)
    cancellation_reason_description: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
