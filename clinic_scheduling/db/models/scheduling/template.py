# clinic_scheduling/db/models/scheduling/template.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import date, datetime, time


class AppointmentTemplate(SQLModel, table=True):
    __tablename__ = "appointment_templates"
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(index=True)
    patient_id: int = Field(index=True)
    therapist_id: int = Field(index=True)
    discipline_id: Optional[int] = Field(default=None)
    recurrence_type: str = Field(max_length=10)
    day_of_week: int
    scheduled_time: time
    duration_minutes: int = Field(default=60)
    start_date: date
    end_date: Optional[date] = Field(default=None)
    generate_weeks_ahead: int = Field(default=4)
    notes: Optional[str] = Field(default=None)
    created_by: Optional[int] = Field(default=None)
    last_generated_date: Optional[date] = Field(default=None)

    # pause and deactivation are stored; active/paused/expired is derived
    pause_reason: Optional[str] = Field(default=None)
    paused_at: Optional[datetime] = Field(default=None)
    paused_until: Optional[date] = Field(default=None)
    deactivation_reason: Optional[str] = Field(default=None)
    deactivated_at: Optional[datetime] = Field(default=None)
    deactivated_by: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
