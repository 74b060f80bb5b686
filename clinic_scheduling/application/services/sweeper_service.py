import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from ...exceptions import ValidationError
from ..ports.appointments_repo import AppointmentsRepository
from ..ports.clock import Clock
from .lifecycle_service import AppointmentLifecycleService

logger = logging.getLogger(__name__)

MIN_GRACE_HOURS = 0.5
MAX_GRACE_HOURS = 24.0


@dataclass
class SweepResult:
    appointment_ids: List[int] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.appointment_ids)


@dataclass
class MissedAppointmentSweeper:
    """Moves overdue scheduled appointments to ``missed``.

    An appointment is overdue once its start plus the grace period lies in
    the past. Running it again right away finds nothing new.
    """

    appointments: AppointmentsRepository
    lifecycle: AppointmentLifecycleService
    clock: Clock
    min_grace_hours: float = MIN_GRACE_HOURS
    max_grace_hours: float = MAX_GRACE_HOURS

    def sweep(self, grace_hours: float, clinic_id: Optional[int] = None) -> SweepResult:
        if grace_hours is None or not self.min_grace_hours <= grace_hours <= self.max_grace_hours:
            raise ValidationError(f"grace_hours must be between {self.min_grace_hours} and {self.max_grace_hours}")

        now = self.clock.now()
        grace = timedelta(hours=grace_hours)
        result = SweepResult()
        for appt in self.appointments.list_scheduled_until(now.date(), clinic_id=clinic_id):
            if appt.starts_at + grace >= now:
                continue
            try:
                self.lifecycle.mark_missed(appt)
            except Exception as e:
                # one bad row must not stop the sweep; it is retried on the next run
                logger.error(f"Failed to mark appointment {appt.id} as missed: {e}")
                continue
            result.appointment_ids.append(appt.id)

        if result.count:
            logger.info(f"Marked {result.count} appointments as missed (grace {grace_hours}h)")
        return result
