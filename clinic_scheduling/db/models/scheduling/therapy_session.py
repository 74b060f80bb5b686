# clinic_scheduling/db/models/scheduling/therapy_session.py
from typing import Any, Dict, List, Optional
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field
from datetime import date, datetime, time


class TherapySession(SQLModel, table=True):
    """Session records are written by the programs module; scheduling only reads them."""

    __tablename__ = "therapy_sessions"
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(index=True)
    patient_id: int = Field(index=True)
    therapist_id: int = Field(index=True)
    session_date: date = Field(index=True)
    session_time: Optional[time] = Field(default=None)
    program_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    detail: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)
