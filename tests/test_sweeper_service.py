from datetime import date, datetime, time

import pytest

from clinic_scheduling.application.ports.appointments_repo import AppointmentStatus
from clinic_scheduling.application.services.maintenance_service import MaintenanceService
from clinic_scheduling.exceptions import ValidationError

from .conftest import CLINIC, make_draft


def test_grace_hours_bounds(sweeper):
    for bad in (0.25, 25, None):
        with pytest.raises(ValidationError):
            sweeper.sweep(bad)


def test_sweep_marks_overdue_only(sweeper, lifecycle, clock):
    overdue = lifecycle.create_appointment(make_draft(date(2024, 1, 2), time(8, 0)))
    within_grace = lifecycle.create_appointment(make_draft(date(2024, 1, 2), time(11, 0), patient_id=8, therapist_id=4))
    later = lifecycle.create_appointment(make_draft(date(2024, 1, 3), time(8, 0)))
    clock.current = datetime(2024, 1, 2, 12, 0)

    result = sweeper.sweep(2)
    assert result.appointment_ids == [overdue.id]
    assert lifecycle.get_appointment(CLINIC, overdue.id).status == AppointmentStatus.MISSED
    assert lifecycle.get_appointment(CLINIC, within_grace.id).status == AppointmentStatus.SCHEDULED
    assert lifecycle.get_appointment(CLINIC, later.id).status == AppointmentStatus.SCHEDULED


def test_sweep_is_idempotent(sweeper, lifecycle, clock):
    for hour in (8, 10, 12):
        lifecycle.create_appointment(make_draft(date(2024, 1, 2), time(hour, 0)))
    clock.current = datetime(2024, 1, 4, 9, 0)

    assert sweeper.sweep(24).count == 3
    assert sweeper.sweep(24).count == 0


def test_sweep_leaves_other_states_alone(sweeper, lifecycle, clock):
    done = lifecycle.create_appointment(make_draft(date(2024, 1, 2), time(8, 0)))
    lifecycle.complete_appointment(CLINIC, done.id)
    cancelled = lifecycle.create_appointment(make_draft(date(2024, 1, 2), time(10, 0)))
    lifecycle.cancel_appointment(CLINIC, cancelled.id, "cancelado_paciente", "paciente doente", acting_user_id=3)
    clock.current = datetime(2024, 1, 5, 9, 0)

    assert sweeper.sweep(0.5).count == 0
    assert lifecycle.get_appointment(CLINIC, done.id).status == AppointmentStatus.COMPLETED


def test_maintenance_links_before_sweeping(sweeper, reconciliation, lifecycle, sessions, clock):
    attended = lifecycle.create_appointment(make_draft(date(2024, 1, 2), time(8, 0)))
    absent = lifecycle.create_appointment(make_draft(date(2024, 1, 2), time(10, 0), patient_id=8))
    sessions.record(date(2024, 1, 2), patient_id=7, therapist_id=3)
    sessions.record(date(2024, 1, 1), patient_id=9, therapist_id=3)
    clock.current = datetime(2024, 1, 3, 9, 0)

    summary = MaintenanceService(reconciliation=reconciliation, sweeper=sweeper).run(CLINIC)
    assert summary["auto_resolved"] == 1
    assert summary["marked_missed"] == 1
    assert summary["orphan_sessions"] == 1
    assert lifecycle.get_appointment(CLINIC, attended.id).status == AppointmentStatus.COMPLETED
    assert lifecycle.get_appointment(CLINIC, absent.id).status == AppointmentStatus.MISSED
