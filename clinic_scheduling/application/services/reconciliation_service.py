import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Sequence, Tuple

from ...exceptions import NotFoundError, ValidationError
from ..ports.appointments_repo import (
    AppointmentDraft,
    AppointmentDto,
    AppointmentsRepository,
    AppointmentStatus,
    Completed,
    DetectionSource,
)
from ..ports.clock import Clock
from ..ports.therapy_sessions_repo import TherapySessionDto, TherapySessionsRepository
from .batch import BatchFailure, BatchResult, run_batch
from .lifecycle_service import AppointmentLifecycleService, validate_duration

logger = logging.getLogger(__name__)

RETROACTIVE_NOTE = "Retroactive appointment for a session recorded without a prior booking"
RETROACTIVE_BATCH_NOTE = "Retroactive appointment created in batch"


@dataclass(frozen=True)
class MatchingPolicy:
    """How a recorded session is paired with a booked appointment.

    Patient always has to match. ``date_tolerance_days`` widens the date
    comparison; ``time_tolerance_minutes`` (when the session carries a time)
    bounds the distance between the booked start and the session start.
    """

    date_tolerance_days: int = 0
    require_same_therapist: bool = True
    time_tolerance_minutes: Optional[int] = None

    def matches(self, session: TherapySessionDto, appt: AppointmentDto) -> bool:
        if session.patient_id != appt.patient_id:
            return False
        if self.require_same_therapist and session.therapist_id != appt.therapist_id:
            return False
        if abs((session.session_date - appt.scheduled_date).days) > self.date_tolerance_days:
            return False
        if self.time_tolerance_minutes is not None and session.session_time is not None:
            delta = abs(datetime.combine(session.session_date, session.session_time) - appt.starts_at)
            if delta > timedelta(minutes=self.time_tolerance_minutes):
                return False
        return True

    def distance(self, session: TherapySessionDto, appt: AppointmentDto) -> Tuple[int, float]:
        day_gap = abs((session.session_date - appt.scheduled_date).days)
        if session.session_time is None:
            return day_gap, 0.0
        return day_gap, abs((datetime.combine(appt.scheduled_date, session.session_time) - appt.starts_at).total_seconds())


@dataclass
class MatchedPair:
    session: TherapySessionDto
    appointment: AppointmentDto


@dataclass
class ReconciliationReport:
    matched: List[MatchedPair] = field(default_factory=list)
    orphan_sessions: List[TherapySessionDto] = field(default_factory=list)
    stale_scheduled: List[AppointmentDto] = field(default_factory=list)


@dataclass
class RetroactiveBatchResult:
    total: int
    appointments: List[AppointmentDto] = field(default_factory=list)
    errors: List[BatchFailure] = field(default_factory=list)

    @property
    def created(self) -> int:
        return len(self.appointments)


@dataclass
class PendingActions:
    orphan_sessions: List[TherapySessionDto]
    unjustified_missed: List[AppointmentDto]

    @property
    def total_pending(self) -> int:
        return len(self.orphan_sessions) + len(self.unjustified_missed)


@dataclass
class ReconciliationService:
    appointments: AppointmentsRepository
    sessions: TherapySessionsRepository
    lifecycle: AppointmentLifecycleService
    clock: Clock
    default_policy: MatchingPolicy = field(default_factory=MatchingPolicy)
    default_session_time: time = time(10, 0)
    batch_limit: int = 50

    def detect(self, clinic_id: int, date_from: date, date_to: date, policy: Optional[MatchingPolicy] = None) -> ReconciliationReport:
        """Cross-reference recorded sessions with the calendar for one clinic.

        Returns the scheduled appointments that have a matching session,
        the sessions no appointment accounts for, and the scheduled
        appointments already in the past with no session at all.
        """
        if date_to < date_from:
            raise ValidationError("date_to cannot be before date_from")
        policy = policy or self.default_policy

        sessions = self.sessions.list_in_range(clinic_id, date_from, date_to)
        linked = self.appointments.linked_session_ids(clinic_id, [s.id for s in sessions])
        unlinked = [s for s in sessions if s.id not in linked]

        # candidates may sit just outside the range when a tolerance is set
        margin = timedelta(days=policy.date_tolerance_days)
        scheduled = self.appointments.list(
            clinic_id,
            date_from=date_from - margin,
            date_to=date_to + margin,
            status=AppointmentStatus.SCHEDULED,
        )

        report = ReconciliationReport()
        taken = set()
        for session in sorted(unlinked, key=lambda s: (s.session_date, s.session_time or time.min, s.id)):
            candidates = [a for a in scheduled if a.id not in taken and policy.matches(session, a)]
            if not candidates:
                report.orphan_sessions.append(session)
                continue
            best = min(candidates, key=lambda a: (policy.distance(session, a), a.starts_at, a.id))
            taken.add(best.id)
            report.matched.append(MatchedPair(session=session, appointment=best))

        today = self.clock.today()
        report.stale_scheduled = [
            a for a in scheduled
            if a.id not in taken and date_from <= a.scheduled_date <= date_to and a.scheduled_date < today
        ]
        logger.info(
            f"Reconciliation clinic {clinic_id} {date_from}..{date_to}: "
            f"{len(report.matched)} matched, {len(report.orphan_sessions)} orphan sessions, {len(report.stale_scheduled)} stale"
        )
        return report

    def auto_resolve(self, clinic_id: int, date_from: date, date_to: date, policy: Optional[MatchingPolicy] = None, acting_user_id: Optional[int] = None) -> BatchResult:
        report = self.detect(clinic_id, date_from, date_to, policy=policy)
        pairs = sorted(report.matched, key=lambda p: (p.appointment.scheduled_date, p.appointment.scheduled_time))
        return run_batch(
            pairs,
            lambda p: self.lifecycle.complete_appointment(clinic_id, p.appointment.id, linked_session_id=p.session.id, acting_user_id=acting_user_id),
            key=lambda p: {"appointment_id": p.appointment.id, "session_id": p.session.id},
        )

    def create_retroactive(
        self,
        clinic_id: int,
        session_id: int,
        discipline_id: Optional[int] = None,
        notes: Optional[str] = None,
        scheduled_time: Optional[time] = None,
        duration_minutes: int = 60,
        acting_user_id: Optional[int] = None,
    ) -> AppointmentDto:
        """Backfill a completed appointment for a session that was never booked."""
        session = self.sessions.get(clinic_id, session_id)
        if not session:
            raise NotFoundError(f"Therapy session {session_id} not found")
        if session_id in self.appointments.linked_session_ids(clinic_id, [session_id]):
            raise ValidationError(f"Therapy session {session_id} is already linked to an appointment")
        validate_duration(duration_minutes)

        draft = AppointmentDraft(
            clinic_id=clinic_id,
            patient_id=session.patient_id,
            therapist_id=session.therapist_id,
            scheduled_date=session.session_date,
            scheduled_time=scheduled_time or session.session_time or self.default_session_time,
            duration_minutes=duration_minutes,
            discipline_id=discipline_id,
            notes=notes or RETROACTIVE_NOTE,
            state=Completed(completed_at=self.clock.now(), linked_session_id=session.id),
            detection_source=DetectionSource.ORPHAN_CONVERTED,
            is_retroactive=True,
            created_by=acting_user_id,
        )
        appt = self.lifecycle.persist(draft)
        logger.info(f"Retroactive appointment {appt.id} created for orphan session {session_id}")
        return appt

    def create_retroactive_batch(
        self,
        clinic_id: int,
        session_ids: Sequence[int],
        discipline_id: Optional[int] = None,
        notes: Optional[str] = None,
        acting_user_id: Optional[int] = None,
    ) -> RetroactiveBatchResult:
        if not session_ids:
            raise ValidationError("Provide at least one session_id")
        if len(session_ids) > self.batch_limit:
            raise ValidationError(f"At most {self.batch_limit} sessions per batch")

        seen = set()

        def create_one(session_id: int) -> AppointmentDto:
            if session_id in seen:
                raise ValidationError(f"Therapy session {session_id} appears more than once in this batch")
            seen.add(session_id)
            return self.create_retroactive(
                clinic_id,
                session_id,
                discipline_id=discipline_id,
                notes=notes or RETROACTIVE_BATCH_NOTE,
                acting_user_id=acting_user_id,
            )

        batch = run_batch(session_ids, create_one)
        logger.info(f"Retroactive batch: {batch.success_count} of {len(session_ids)} appointments created")
        return RetroactiveBatchResult(total=len(session_ids), appointments=batch.succeeded, errors=batch.failed)

    def pending_actions(self, clinic_id: int, lookback_days: int = 7) -> PendingActions:
        if lookback_days < 1:
            raise ValidationError("lookback_days must be at least 1")
        today = self.clock.today()
        report = self.detect(clinic_id, today - timedelta(days=lookback_days), today)
        missed = self.appointments.list(clinic_id, status=AppointmentStatus.MISSED)
        unjustified = sorted((a for a in missed if not a.is_justified), key=lambda a: a.starts_at, reverse=True)
        return PendingActions(orphan_sessions=report.orphan_sessions, unjustified_missed=unjustified)
