from datetime import date, datetime
from typing import Iterable, List, Optional, Set

from sqlmodel import Session, select

from .....db.models import Appointment
from .....application.ports.appointments_repo import (
    AppointmentDraft,
    AppointmentDto,
    AppointmentsRepository,
    AppointmentState,
    AppointmentStatus,
    CancellationReason,
    Cancelled,
    Completed,
    DetectionSource,
    Justification,
    Missed,
    MissedBy,
    MissedReason,
    Scheduled,
)

STATE_COLUMNS = (
    "completed_at",
    "linked_session_id",
    "missed_at",
    "justified_at",
    "justified_by",
    "missed_reason_type",
    "missed_reason_description",
    "missed_by",
    "cancelled_at",
    "cancelled_by",
    "cancellation_reason_type",
    "cancellation_reason_description",
)


def state_from_row(a: Appointment) -> AppointmentState:
    status = AppointmentStatus(a.status)
    if status == AppointmentStatus.COMPLETED:
        return Completed(completed_at=a.completed_at or a.updated_at, linked_session_id=a.linked_session_id)
    if status == AppointmentStatus.MISSED:
        justification = None
        if a.justified_at is not None:
            justification = Justification(
                justified_at=a.justified_at,
                justified_by=a.justified_by,
                reason_type=MissedReason(a.missed_reason_type),
                reason_description=a.missed_reason_description,
                missed_by=MissedBy(a.missed_by),
            )
        return Missed(missed_at=a.missed_at or a.updated_at, justification=justification)
    if status == AppointmentStatus.CANCELLED:
        return Cancelled(
            cancelled_at=a.cancelled_at or a.updated_at,
            cancelled_by=a.cancelled_by,
            reason_type=CancellationReason(a.cancellation_reason_type or CancellationReason.OTHER.value),
            reason_description=a.cancellation_reason_description or "",
        )
    return Scheduled()


def state_to_columns(state: AppointmentState) -> dict:
    """Flatten a state variant; columns of the other variants are cleared."""
    cols = dict.fromkeys(STATE_COLUMNS)
    cols["status"] = state.status.value
    if isinstance(state, Completed):
        cols.update(completed_at=state.completed_at, linked_session_id=state.linked_session_id)
    elif isinstance(state, Missed):
        cols["missed_at"] = state.missed_at
        j = state.justification
        if j is not None:
            cols.update(
                justified_at=j.justified_at,
                justified_by=j.justified_by,
                missed_reason_type=j.reason_type.value,
                missed_reason_description=j.reason_description,
                missed_by=j.missed_by.value,
            )
    elif isinstance(state, Cancelled):
        cols.update(
            cancelled_at=state.cancelled_at,
            cancelled_by=state.cancelled_by,
            cancellation_reason_type=state.reason_type.value,
            cancellation_reason_description=state.reason_description,
        )
    return cols


class SqlAppointmentsRepository(AppointmentsRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, a: Appointment) -> AppointmentDto:
        return AppointmentDto(
            id=a.id,
            clinic_id=a.clinic_id,
            patient_id=a.patient_id,
            therapist_id=a.therapist_id,
            scheduled_date=a.scheduled_date,
            scheduled_time=a.scheduled_time,
            duration_minutes=a.duration_minutes,
            state=state_from_row(a),
            discipline_id=a.discipline_id,
            notes=a.notes,
            recurring_template_id=a.recurring_template_id,
            detection_source=DetectionSource(a.detection_source),
            is_retroactive=bool(a.is_retroactive),
            created_by=a.created_by,
            created_at=a.created_at,
            updated_at=a.updated_at,
        )

    def _row(self, clinic_id: int, appointment_id: int) -> Optional[Appointment]:
        return self.session.exec(
            select(Appointment)
            .where(Appointment.id == appointment_id)
            .where(Appointment.clinic_id == clinic_id)
        ).first()

    def _commit(self, row: Appointment) -> Appointment:
        try:
            self.session.add(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(row)
        return row

    def add(self, draft: AppointmentDraft) -> AppointmentDto:
        row = Appointment(
            clinic_id=draft.clinic_id,
            patient_id=draft.patient_id,
            therapist_id=draft.therapist_id,
            discipline_id=draft.discipline_id,
            scheduled_date=draft.scheduled_date,
            scheduled_time=draft.scheduled_time,
            duration_minutes=draft.duration_minutes,
            notes=draft.notes,
            recurring_template_id=draft.recurring_template_id,
            detection_source=draft.detection_source.value,
            is_retroactive=draft.is_retroactive,
            created_by=draft.created_by,
            **state_to_columns(draft.state),
        )
        return self._to_dto(self._commit(row))

    def get(self, clinic_id: int, appointment_id: int) -> Optional[AppointmentDto]:
        a = self._row(clinic_id, appointment_id)
        return self._to_dto(a) if a else None

    def list(self, clinic_id: int, date_from: Optional[date] = None, date_to: Optional[date] = None, status: Optional[AppointmentStatus] = None, patient_id: Optional[int] = None, therapist_id: Optional[int] = None) -> List[AppointmentDto]:
        query = select(Appointment).where(Appointment.clinic_id == clinic_id)
        if date_from is not None:
            query = query.where(Appointment.scheduled_date >= date_from)
        if date_to is not None:
            query = query.where(Appointment.scheduled_date <= date_to)
        if status is not None:
            query = query.where(Appointment.status == status.value)
        if patient_id is not None:
            query = query.where(Appointment.patient_id == patient_id)
        if therapist_id is not None:
            query = query.where(Appointment.therapist_id == therapist_id)
        rows = self.session.exec(query.order_by(Appointment.scheduled_date, Appointment.scheduled_time, Appointment.id)).all()
        return [self._to_dto(r) for r in rows]

    def list_for_parties_on_date(self, clinic_id: int, scheduled_date: date, patient_id: int, therapist_id: int) -> List[AppointmentDto]:
        rows = self.session.exec(
            select(Appointment)
            .where(Appointment.clinic_id == clinic_id)
            .where(Appointment.scheduled_date == scheduled_date)
            .where(Appointment.status != AppointmentStatus.CANCELLED.value)
            .where((Appointment.patient_id == patient_id) | (Appointment.therapist_id == therapist_id))
            .order_by(Appointment.scheduled_time)
        ).all()
        return [self._to_dto(r) for r in rows]

    def list_for_template(self, clinic_id: int, template_id: int, date_from: Optional[date] = None, status: Optional[AppointmentStatus] = None) -> List[AppointmentDto]:
        query = (
            select(Appointment)
            .where(Appointment.clinic_id == clinic_id)
            .where(Appointment.recurring_template_id == template_id)
        )
        if date_from is not None:
            query = query.where(Appointment.scheduled_date >= date_from)
        if status is not None:
            query = query.where(Appointment.status == status.value)
        rows = self.session.exec(query.order_by(Appointment.scheduled_date, Appointment.scheduled_time, Appointment.id)).all()
        return [self._to_dto(r) for r in rows]

    def latest_date_for_template(self, clinic_id: int, template_id: int) -> Optional[date]:
        a = self.session.exec(
            select(Appointment)
            .where(Appointment.clinic_id == clinic_id)
            .where(Appointment.recurring_template_id == template_id)
            .order_by(Appointment.scheduled_date.desc())
        ).first()
        return a.scheduled_date if a else None

    def linked_session_ids(self, clinic_id: int, session_ids: Iterable[int]) -> Set[int]:
        ids = list(session_ids)
        if not ids:
            return set()
        rows = self.session.exec(
            select(Appointment.linked_session_id)
            .where(Appointment.clinic_id == clinic_id)
            .where(Appointment.linked_session_id.in_(ids))
        ).all()
        return {r for r in rows if r is not None}

    def list_scheduled_until(self, cutoff: date, clinic_id: Optional[int] = None) -> List[AppointmentDto]:
        query = (
            select(Appointment)
            .where(Appointment.status == AppointmentStatus.SCHEDULED.value)
            .where(Appointment.scheduled_date <= cutoff)
        )
        if clinic_id is not None:
            query = query.where(Appointment.clinic_id == clinic_id)
        rows = self.session.exec(query.order_by(Appointment.scheduled_date, Appointment.scheduled_time)).all()
        return [self._to_dto(r) for r in rows]

    def save(self, appointment: AppointmentDto) -> AppointmentDto:
        a = self._row(appointment.clinic_id, appointment.id)
        if not a:
            raise LookupError(f"Appointment {appointment.id} does not exist")
        a.patient_id = appointment.patient_id
        a.therapist_id = appointment.therapist_id
        a.discipline_id = appointment.discipline_id
        a.scheduled_date = appointment.scheduled_date
        a.scheduled_time = appointment.scheduled_time
        a.duration_minutes = appointment.duration_minutes
        a.notes = appointment.notes
        a.recurring_template_id = appointment.recurring_template_id
        a.detection_source = appointment.detection_source.value
        a.is_retroactive = appointment.is_retroactive
        for column, value in state_to_columns(appointment.state).items():
            setattr(a, column, value)
        a.updated_at = appointment.updated_at or datetime.utcnow()
        return self._to_dto(self._commit(a))

    def delete(self, clinic_id: int, appointment_id: int) -> None:
        a = self._row(clinic_id, appointment_id)
        if not a:
            return
        try:
            self.session.delete(a)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
