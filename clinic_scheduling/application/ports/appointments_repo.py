from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterable, List, Optional, Set, Union


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    MISSED = "missed"
    CANCELLED = "cancelled"


class DetectionSource(str, Enum):
    MANUAL = "manual"
    RECURRING = "recurring"
    AUTO_DETECTED = "auto_detected"
    ORPHAN_CONVERTED = "orphan_converted"


class CancellationReason(str, Enum):
    PATIENT = "cancelado_paciente"
    CLINIC = "cancelado_clinica"
    THERAPIST_UNAVAILABLE = "terapeuta_indisponivel"
    HOLIDAY = "feriado"
    RESCHEDULE = "remarcacao"
    OTHER = "outro"


class MissedReason(str, Enum):
    PATIENT_ILLNESS = "patient_illness"
    PATIENT_TRAVEL = "patient_travel"
    PATIENT_NO_SHOW = "patient_no_show"
    PATIENT_FAMILY_EMERGENCY = "patient_family_emergency"
    THERAPIST_ILLNESS = "therapist_illness"
    THERAPIST_EMERGENCY = "therapist_emergency"
    THERAPIST_TRAINING = "therapist_training"
    CLINIC_CLOSURE = "clinic_closure"
    EQUIPMENT_FAILURE = "equipment_failure"
    SCHEDULING_ERROR = "scheduling_error"
    OTHER = "other"


class MissedBy(str, Enum):
    PATIENT = "patient"
    THERAPIST = "therapist"
    BOTH = "both"
    OTHER = "other"


# Appointment state is a tagged union: outcome-specific fields only exist on
# the variant they belong to.

@dataclass(frozen=True)
class Scheduled:
    status = AppointmentStatus.SCHEDULED


@dataclass(frozen=True)
class Completed:
    completed_at: datetime
    linked_session_id: Optional[int] = None
    status = AppointmentStatus.COMPLETED


@dataclass(frozen=True)
class Justification:
    justified_at: datetime
    justified_by: int
    reason_type: MissedReason
    reason_description: str
    missed_by: MissedBy


@dataclass(frozen=True)
class Missed:
    missed_at: datetime
    justification: Optional[Justification] = None
    status = AppointmentStatus.MISSED


@dataclass(frozen=True)
class Cancelled:
    cancelled_at: datetime
    cancelled_by: Optional[int]
    reason_type: CancellationReason
    reason_description: str
    status = AppointmentStatus.CANCELLED


AppointmentState = Union[Scheduled, Completed, Missed, Cancelled]


@dataclass
class AppointmentDraft:
    clinic_id: int
    patient_id: int
    therapist_id: int
    scheduled_date: date
    scheduled_time: time
    duration_minutes: int
    discipline_id: Optional[int] = None
    notes: Optional[str] = None
    recurring_template_id: Optional[int] = None
    state: AppointmentState = field(default_factory=Scheduled)
    detection_source: DetectionSource = DetectionSource.MANUAL
    is_retroactive: bool = False
    created_by: Optional[int] = None


@dataclass
class AppointmentDto:
    id: int
    clinic_id: int
    patient_id: int
    therapist_id: int
    scheduled_date: date
    scheduled_time: time
    duration_minutes: int
    state: AppointmentState = field(default_factory=Scheduled)
    discipline_id: Optional[int] = None
    notes: Optional[str] = None
    recurring_template_id: Optional[int] = None
    detection_source: DetectionSource = DetectionSource.MANUAL
    is_retroactive: bool = False
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def status(self) -> AppointmentStatus:
        return self.state.status

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.scheduled_time)

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)

    @property
    def linked_session_id(self) -> Optional[int]:
        return self.state.linked_session_id if isinstance(self.state, Completed) else None

    @property
    def justification(self) -> Optional[Justification]:
        return self.state.justification if isinstance(self.state, Missed) else None

    @property
    def is_justified(self) -> bool:
        return self.justification is not None

    def is_admin_override(self) -> bool:
        """True when the absence was justified by someone other than the assigned therapist."""
        j = self.justification
        return j is not None and j.justified_by != self.therapist_id


class AppointmentsRepository:
    def add(self, draft: AppointmentDraft) -> AppointmentDto:
        ...

    def get(self, clinic_id: int, appointment_id: int) -> Optional[AppointmentDto]:
        ...

    def list(self, clinic_id: int, date_from: Optional[date] = None, date_to: Optional[date] = None, status: Optional[AppointmentStatus] = None, patient_id: Optional[int] = None, therapist_id: Optional[int] = None) -> List[AppointmentDto]:
        ...

    def list_for_parties_on_date(self, clinic_id: int, scheduled_date: date, patient_id: int, therapist_id: int) -> List[AppointmentDto]:
        ...

    def list_for_template(self, clinic_id: int, template_id: int, date_from: Optional[date] = None, status: Optional[AppointmentStatus] = None) -> List[AppointmentDto]:
        ...

    def latest_date_for_template(self, clinic_id: int, template_id: int) -> Optional[date]:
        ...

    def linked_session_ids(self, clinic_id: int, session_ids: Iterable[int]) -> Set[int]:
        ...

    def list_scheduled_until(self, cutoff: date, clinic_id: Optional[int] = None) -> List[AppointmentDto]:
        ...

    def save(self, appointment: AppointmentDto) -> AppointmentDto:
        ...

    def delete(self, clinic_id: int, appointment_id: int) -> None:
        ...
