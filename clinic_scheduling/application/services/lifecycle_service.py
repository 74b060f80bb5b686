import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from ...exceptions import (
    AlreadyJustifiedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..ports.appointments_repo import (
    AppointmentDraft,
    AppointmentDto,
    AppointmentsRepository,
    AppointmentStatus,
    CancellationReason,
    Cancelled,
    Completed,
    Justification,
    Missed,
    MissedBy,
    MissedReason,
)
from ..ports.audit_logger import AuditLogger
from ..ports.clock import Clock
from ..ports.therapy_sessions_repo import TherapySessionsRepository
from .conflicts import Candidate, Conflict, find_conflicts
from .recurrence import MAX_DURATION_MINUTES, MIN_DURATION_MINUTES

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

EDITABLE_FIELDS = ("scheduled_date", "scheduled_time", "duration_minutes", "notes", "discipline_id", "therapist_id")
PAST_TOLERANCE = timedelta(minutes=5)
MAX_BOOKING_AHEAD = timedelta(days=366)


def coerce_enum(enum_cls: Type[E], value: Any, field_name: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {field_name}. Must be one of: {[e.value for e in enum_cls]}")


def require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required")
    return str(value).strip()


def validate_duration(duration_minutes: int) -> None:
    if not MIN_DURATION_MINUTES <= int(duration_minutes) <= MAX_DURATION_MINUTES:
        raise ValidationError(f"duration_minutes must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES}")


def conflicts_payload(conflicts: List[Conflict]) -> List[Dict[str, Any]]:
    return [c.as_dict() for c in conflicts]


@dataclass
class AppointmentLifecycleService:
    """State machine for a single appointment.

    scheduled -> completed | missed | cancelled. The three outcomes are
    terminal; a missed appointment can additionally be justified exactly
    once. Only scheduled appointments may be edited or hard-deleted.
    """

    repo: AppointmentsRepository
    clock: Clock
    audit: AuditLogger
    sessions: TherapySessionsRepository

    def get_appointment(self, clinic_id: int, appointment_id: int) -> AppointmentDto:
        appt = self.repo.get(clinic_id, appointment_id)
        if not appt:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appt

    def list_appointments(self, clinic_id: int, date_from: Optional[date] = None, date_to: Optional[date] = None, status: Optional[str] = None, patient_id: Optional[int] = None, therapist_id: Optional[int] = None) -> List[AppointmentDto]:
        status_enum = coerce_enum(AppointmentStatus, status, "status") if status else None
        if date_from and date_to and date_to < date_from:
            raise ValidationError("date_to cannot be before date_from")
        return self.repo.list(clinic_id, date_from=date_from, date_to=date_to, status=status_enum, patient_id=patient_id, therapist_id=therapist_id)

    def check_conflicts(self, clinic_id: int, candidate: Candidate, exclude_id: Optional[int] = None) -> List[Conflict]:
        existing = self.repo.list_for_parties_on_date(clinic_id, candidate.scheduled_date, candidate.patient_id, candidate.therapist_id)
        return find_conflicts(existing, candidate, exclude_id=exclude_id)

    def persist(self, draft: AppointmentDraft) -> AppointmentDto:
        """Store an already-validated appointment without any conflict check."""
        appt = self.repo.add(draft)
        self.audit.log(
            "appointment.created",
            clinic_id=appt.clinic_id,
            user_id=draft.created_by,
            entity_id=appt.id,
            details={
                "status": appt.status.value,
                "scheduled_date": appt.scheduled_date.isoformat(),
                "recurring_template_id": appt.recurring_template_id,
                "detection_source": appt.detection_source.value,
            },
        )
        return appt

    def create_appointment(self, draft: AppointmentDraft) -> AppointmentDto:
        validate_duration(draft.duration_minutes)
        self._validate_booking_time(draft.scheduled_date, draft.scheduled_time)
        conflicts = self.check_conflicts(draft.clinic_id, _candidate_for(draft))
        if conflicts:
            raise ConflictError("Scheduling conflict: this slot overlaps an existing appointment", conflicts=conflicts_payload(conflicts))
        appt = self.persist(draft)
        logger.info(f"Appointment {appt.id} booked for patient {appt.patient_id} with therapist {appt.therapist_id} on {appt.scheduled_date}")
        return appt

    def update_appointment(self, clinic_id: int, appointment_id: int, fields: Dict[str, Any], acting_user_id: Optional[int] = None) -> AppointmentDto:
        appt = self.get_appointment(clinic_id, appointment_id)
        if appt.status != AppointmentStatus.SCHEDULED:
            raise InvalidStateError(f"Only scheduled appointments can be edited (current status: {appt.status.value})")

        changes = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
        if not changes:
            raise ValidationError("No editable field supplied")
        if "duration_minutes" in changes:
            validate_duration(changes["duration_minutes"])
        for required in ("scheduled_date", "scheduled_time", "duration_minutes", "therapist_id"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"{required} cannot be empty")

        updated = replace(appt, **changes, updated_at=self.clock.now())
        if "scheduled_date" in changes or "scheduled_time" in changes:
            self._validate_booking_time(updated.scheduled_date, updated.scheduled_time)

        if any(k in changes for k in ("scheduled_date", "scheduled_time", "duration_minutes", "therapist_id")):
            conflicts = self.check_conflicts(clinic_id, _candidate_for(updated), exclude_id=appt.id)
            if conflicts:
                raise ConflictError("Scheduling conflict: the new slot overlaps an existing appointment", conflicts=conflicts_payload(conflicts))

        saved = self.repo.save(updated)
        self.audit.log("appointment.updated", clinic_id=clinic_id, user_id=acting_user_id, entity_id=appt.id, details={"fields": sorted(changes)})
        return saved

    def complete_appointment(self, clinic_id: int, appointment_id: int, linked_session_id: Optional[int] = None, acting_user_id: Optional[int] = None) -> AppointmentDto:
        appt = self.get_appointment(clinic_id, appointment_id)
        if appt.status != AppointmentStatus.SCHEDULED:
            raise InvalidStateError(f"Cannot complete an appointment with status {appt.status.value}")
        if linked_session_id is not None:
            self._check_session_link(appt, linked_session_id)

        now = self.clock.now()
        saved = self.repo.save(replace(appt, state=Completed(completed_at=now, linked_session_id=linked_session_id), updated_at=now))
        self.audit.log("appointment.completed", clinic_id=clinic_id, user_id=acting_user_id, entity_id=appt.id, details={"linked_session_id": linked_session_id})
        return saved

    def cancel_appointment(self, clinic_id: int, appointment_id: int, reason_type: Any, reason_description: Optional[str], acting_user_id: Optional[int]) -> AppointmentDto:
        reason = coerce_enum(CancellationReason, reason_type, "reason_type")
        description = require_text(reason_description, "reason_description")

        appt = self.get_appointment(clinic_id, appointment_id)
        if appt.status != AppointmentStatus.SCHEDULED:
            raise InvalidStateError(f"Only scheduled appointments can be cancelled (current status: {appt.status.value})")

        now = self.clock.now()
        state = Cancelled(cancelled_at=now, cancelled_by=acting_user_id, reason_type=reason, reason_description=description)
        saved = self.repo.save(replace(appt, state=state, updated_at=now))
        self.audit.log("appointment.cancelled", clinic_id=clinic_id, user_id=acting_user_id, entity_id=appt.id, details={"reason_type": reason.value})
        logger.info(f"Appointment {appt.id} cancelled ({reason.value})")
        return saved

    def delete_appointment(self, clinic_id: int, appointment_id: int, acting_user_id: Optional[int] = None) -> AppointmentDto:
        appt = self.get_appointment(clinic_id, appointment_id)
        if appt.status != AppointmentStatus.SCHEDULED:
            # completed/missed/cancelled rows are audit records and are never purged
            raise InvalidStateError(f"Cannot delete an appointment with status {appt.status.value}; only scheduled appointments can be deleted")
        self.repo.delete(clinic_id, appointment_id)
        self.audit.log("appointment.deleted", clinic_id=clinic_id, user_id=acting_user_id, entity_id=appt.id, details={"scheduled_date": appt.scheduled_date.isoformat(), "recurring_template_id": appt.recurring_template_id})
        return appt

    def justify_absence(self, clinic_id: int, appointment_id: int, reason_type: Any, reason_description: Optional[str], missed_by: Any, acting_user_id: int) -> AppointmentDto:
        reason = coerce_enum(MissedReason, reason_type, "missed_reason_type")
        responsible = coerce_enum(MissedBy, missed_by, "missed_by")
        description = require_text(reason_description, "missed_reason_description")

        appt = self.get_appointment(clinic_id, appointment_id)
        if not isinstance(appt.state, Missed):
            raise InvalidStateError(f"Only missed appointments can be justified (current status: {appt.status.value})")
        if appt.state.justification is not None:
            raise AlreadyJustifiedError(f"Appointment {appointment_id} was already justified on {appt.state.justification.justified_at.isoformat()}")

        now = self.clock.now()
        justification = Justification(
            justified_at=now,
            justified_by=acting_user_id,
            reason_type=reason,
            reason_description=description,
            missed_by=responsible,
        )
        saved = self.repo.save(replace(appt, state=replace(appt.state, justification=justification), updated_at=now))
        self.audit.log(
            "appointment.justified",
            clinic_id=clinic_id,
            user_id=acting_user_id,
            entity_id=appt.id,
            details={"reason_type": reason.value, "missed_by": responsible.value, "admin_override": saved.is_admin_override()},
        )
        return saved

    def mark_missed(self, appointment: AppointmentDto) -> AppointmentDto:
        if appointment.status != AppointmentStatus.SCHEDULED:
            raise InvalidStateError(f"Cannot mark an appointment with status {appointment.status.value} as missed")
        now = self.clock.now()
        saved = self.repo.save(replace(appointment, state=Missed(missed_at=now), updated_at=now))
        self.audit.log("appointment.missed", clinic_id=appointment.clinic_id, entity_id=appointment.id, details={"scheduled_date": appointment.scheduled_date.isoformat()})
        return saved

    def _check_session_link(self, appt: AppointmentDto, session_id: int) -> None:
        session = self.sessions.get(appt.clinic_id, session_id)
        if not session:
            raise NotFoundError(f"Session {session_id} not found")
        if session.patient_id != appt.patient_id:
            raise ValidationError(f"Session {session_id} belongs to another patient")
        if session_id in self.repo.linked_session_ids(appt.clinic_id, [session_id]):
            raise ValidationError(f"Session {session_id} is already linked to another appointment")

    def _validate_booking_time(self, scheduled_date: date, scheduled_time: time) -> None:
        if scheduled_date is None or scheduled_time is None:
            raise ValidationError("scheduled_date and scheduled_time are required")
        starts_at = datetime.combine(scheduled_date, scheduled_time)
        now = self.clock.now()
        if starts_at < now - PAST_TOLERANCE:
            raise ValidationError("Cannot book an appointment in the past")
        if starts_at > now + MAX_BOOKING_AHEAD:
            raise ValidationError("Cannot book an appointment more than one year ahead")


def _candidate_for(appt) -> Candidate:
    return Candidate(
        patient_id=appt.patient_id,
        therapist_id=appt.therapist_id,
        scheduled_date=appt.scheduled_date,
        scheduled_time=appt.scheduled_time,
        duration_minutes=appt.duration_minutes,
    )
