from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional

from ..ports.appointments_repo import AppointmentDto, AppointmentStatus


@dataclass(frozen=True)
class Candidate:
    patient_id: int
    therapist_id: int
    scheduled_date: date
    scheduled_time: time
    duration_minutes: int

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.scheduled_time)

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)


@dataclass(frozen=True)
class Conflict:
    party: str  # "patient" or "therapist"
    appointment: AppointmentDto

    def as_dict(self) -> dict:
        a = self.appointment
        return {
            "party": self.party,
            "appointment_id": a.id,
            "patient_id": a.patient_id,
            "therapist_id": a.therapist_id,
            "scheduled_date": a.scheduled_date.isoformat(),
            "scheduled_time": a.scheduled_time.strftime("%H:%M"),
            "duration_minutes": a.duration_minutes,
            "status": a.status.value,
        }


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    # half-open [start, end): touching boundaries do not overlap
    return start_a < end_b and end_a > start_b


def find_conflicts(existing: Iterable[AppointmentDto], candidate: Candidate, exclude_id: Optional[int] = None) -> List[Conflict]:
    """Appointments that clash with ``candidate`` for its patient or its therapist.

    The caller supplies the existing set (same clinic, same date); this is a
    pure check over that data. An appointment booked for both parties shows
    up once per party.
    """
    conflicts = []
    for appt in existing:
        if exclude_id is not None and appt.id == exclude_id:
            continue
        if appt.status == AppointmentStatus.CANCELLED:
            continue
        if appt.scheduled_date != candidate.scheduled_date:
            continue
        if not intervals_overlap(candidate.starts_at, candidate.ends_at, appt.starts_at, appt.ends_at):
            continue
        if appt.patient_id == candidate.patient_id:
            conflicts.append(Conflict(party="patient", appointment=appt))
        if appt.therapist_id == candidate.therapist_id:
            conflicts.append(Conflict(party="therapist", appointment=appt))
    return conflicts


def has_conflict(existing: Iterable[AppointmentDto], candidate: Candidate, exclude_id: Optional[int] = None) -> bool:
    return bool(find_conflicts(existing, candidate, exclude_id=exclude_id))
