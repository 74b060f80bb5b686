# clinic_scheduling/schemas/scheduling/reconciliation.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import date, datetime, time

from ...application.ports.therapy_sessions_repo import TherapySessionDto
from .appointment import AppointmentResponse, BatchFailureResponse


class MatchingPolicyRequest(BaseModel):
    date_tolerance_days: Optional[int] = Field(default=None, ge=0, le=7)
    require_same_therapist: Optional[bool] = None
    time_tolerance_minutes: Optional[int] = Field(default=None, ge=0, le=720)


class AutoResolveRequest(MatchingPolicyRequest):
    date_from: date
    date_to: date


class RetroactiveCreate(BaseModel):
    session_id: int
    discipline_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    scheduled_time: Optional[time] = None
    duration_minutes: int = 60


class RetroactiveBatchCreate(BaseModel):
    session_ids: List[int]
    discipline_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class TherapySessionResponse(BaseModel):
    id: int
    patient_id: int
    therapist_id: int
    session_date: date
    session_time: Optional[time] = None
    created_at: Optional[datetime] = None
    program_ids: List[int] = []

    @classmethod
    def from_dto(cls, s: TherapySessionDto) -> "TherapySessionResponse":
        return cls(
            id=s.id,
            patient_id=s.patient_id,
            therapist_id=s.therapist_id,
            session_date=s.session_date,
            session_time=s.session_time,
            created_at=s.created_at,
            program_ids=s.program_ids,
        )


class MatchedPairResponse(BaseModel):
    session: TherapySessionResponse
    appointment: AppointmentResponse


class ReconciliationReportResponse(BaseModel):
    date_from: date
    date_to: date
    matched: List[MatchedPairResponse] = []
    orphan_sessions: List[TherapySessionResponse] = []
    stale_scheduled: List[AppointmentResponse] = []


class AutoResolveResponse(BaseModel):
    resolved: List[AppointmentResponse] = []
    resolved_count: int = 0
    errors: List[BatchFailureResponse] = []


class RetroactiveBatchResponse(BaseModel):
    created: int
    total: int
    appointments: List[AppointmentResponse] = []
    errors: List[BatchFailureResponse] = []


class PendingActionsResponse(BaseModel):
    lookback_days: int
    total_pending: int
    orphan_sessions: List[TherapySessionResponse] = []
    unjustified_missed: List[AppointmentResponse] = []


class SweepRequest(BaseModel):
    grace_hours: Optional[float] = None


class SweepResponse(BaseModel):
    count: int
    appointment_ids: List[int] = []


class MaintenanceResponse(BaseModel):
    summary: Dict[str, Any]
