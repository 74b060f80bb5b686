from datetime import date, time

from clinic_scheduling.application.ports.appointments_repo import (
    AppointmentDto,
    CancellationReason,
    Cancelled,
)
from clinic_scheduling.application.services.conflicts import Candidate, find_conflicts, has_conflict, intervals_overlap

DAY = date(2024, 1, 2)


def appt(id, start, minutes=60, patient_id=7, therapist_id=3, **kw):
    return AppointmentDto(id=id, clinic_id=1, patient_id=patient_id, therapist_id=therapist_id, scheduled_date=kw.pop("scheduled_date", DAY), scheduled_time=start, duration_minutes=minutes, **kw)


def candidate(start, minutes=60, patient_id=7, therapist_id=3, scheduled_date=DAY):
    return Candidate(patient_id=patient_id, therapist_id=therapist_id, scheduled_date=scheduled_date, scheduled_time=start, duration_minutes=minutes)


def as_appt(c: Candidate, id):
    return appt(id, c.scheduled_time, c.duration_minutes, c.patient_id, c.therapist_id, scheduled_date=c.scheduled_date)


def test_touching_boundaries_do_not_conflict():
    existing = [appt(1, time(9, 0), 60, patient_id=1)]
    assert not has_conflict(existing, candidate(time(10, 0), patient_id=2))


def test_overlap_for_same_therapist():
    existing = [appt(1, time(9, 30), 60, patient_id=1)]
    conflicts = find_conflicts(existing, candidate(time(10, 0), patient_id=2))
    assert [c.party for c in conflicts] == ["therapist"]
    assert conflicts[0].appointment.id == 1


def test_overlap_for_same_patient_with_other_therapist():
    existing = [appt(1, time(10, 15), 30, therapist_id=9)]
    conflicts = find_conflicts(existing, candidate(time(10, 0)))
    assert [c.party for c in conflicts] == ["patient"]


def test_both_parties_reported():
    existing = [appt(1, time(10, 0))]
    assert sorted(c.party for c in find_conflicts(existing, candidate(time(10, 30)))) == ["patient", "therapist"]


def test_unrelated_parties_never_conflict():
    existing = [appt(1, time(10, 0), patient_id=1, therapist_id=1)]
    assert not has_conflict(existing, candidate(time(10, 0), patient_id=2, therapist_id=2))


def test_cancelled_appointments_are_ignored():
    from datetime import datetime
    state = Cancelled(cancelled_at=datetime(2024, 1, 1), cancelled_by=1, reason_type=CancellationReason.OTHER, reason_description="x")
    existing = [appt(1, time(10, 0), state=state)]
    assert not has_conflict(existing, candidate(time(10, 0)))


def test_other_dates_are_ignored():
    existing = [appt(1, time(10, 0), scheduled_date=date(2024, 1, 3))]
    assert not has_conflict(existing, candidate(time(10, 0)))


def test_excluded_appointment_is_ignored():
    existing = [appt(1, time(10, 0))]
    assert not has_conflict(existing, candidate(time(10, 30)), exclude_id=1)


def test_conflict_is_symmetric():
    pairs = [
        (candidate(time(9, 0), 60), candidate(time(9, 30), 60)),
        (candidate(time(9, 0), 60), candidate(time(10, 0), 30)),
        (candidate(time(9, 0), 120), candidate(time(9, 30), 15)),
        (candidate(time(8, 0), 45), candidate(time(9, 0), 60)),
    ]
    for a, b in pairs:
        assert has_conflict([as_appt(a, 1)], b) == has_conflict([as_appt(b, 2)], a)


def test_intervals_overlap_half_open():
    from datetime import datetime
    assert intervals_overlap(datetime(2024, 1, 2, 9), datetime(2024, 1, 2, 10), datetime(2024, 1, 2, 9, 59), datetime(2024, 1, 2, 11))
    assert not intervals_overlap(datetime(2024, 1, 2, 9), datetime(2024, 1, 2, 10), datetime(2024, 1, 2, 10), datetime(2024, 1, 2, 11))
