from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional


@dataclass
class TherapySessionDto:
    id: int
    clinic_id: int
    patient_id: int
    therapist_id: int
    session_date: date
    session_time: Optional[time] = None
    created_at: Optional[datetime] = None
    program_ids: List[int] = field(default_factory=list)
    detail: Dict[str, Any] = field(default_factory=dict)


class TherapySessionsRepository:
    """Read-only view over the therapy-session records owned by the programs module."""

    def get(self, clinic_id: int, session_id: int) -> Optional[TherapySessionDto]:
        ...

    def list_in_range(self, clinic_id: int, date_from: date, date_to: date) -> List[TherapySessionDto]:
        ...
