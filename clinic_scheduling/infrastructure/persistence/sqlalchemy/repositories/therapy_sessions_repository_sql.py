from datetime import date
from typing import List, Optional

from sqlmodel import Session, select

from .....db.models import TherapySession
from .....application.ports.therapy_sessions_repo import TherapySessionDto, TherapySessionsRepository


class SqlTherapySessionsRepository(TherapySessionsRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, s: TherapySession) -> TherapySessionDto:
        return TherapySessionDto(
            id=s.id,
            clinic_id=s.clinic_id,
            patient_id=s.patient_id,
            therapist_id=s.therapist_id,
            session_date=s.session_date,
            session_time=s.session_time,
            created_at=s.created_at,
            program_ids=list(s.program_ids or []),
            detail=dict(s.detail or {}),
        )

    def get(self, clinic_id: int, session_id: int) -> Optional[TherapySessionDto]:
        s = self.session.exec(
            select(TherapySession)
            .where(TherapySession.id == session_id)
            .where(TherapySession.clinic_id == clinic_id)
        ).first()
        return self._to_dto(s) if s else None

    def list_in_range(self, clinic_id: int, date_from: date, date_to: date) -> List[TherapySessionDto]:
        rows = self.session.exec(
            select(TherapySession)
            .where(TherapySession.clinic_id == clinic_id)
            .where(TherapySession.session_date >= date_from)
            .where(TherapySession.session_date <= date_to)
            .order_by(TherapySession.session_date, TherapySession.id)
        ).all()
        return [self._to_dto(r) for r in rows]
