from datetime import date, time, timedelta

import pytest

from clinic_scheduling.application.ports.templates_repo import RecurrenceType, TemplateDraft
from clinic_scheduling.application.services.recurrence import clinic_weekday, expand, first_occurrence
from clinic_scheduling.exceptions import ValidationError


def rule(**kw):
    base = dict(
        clinic_id=1,
        patient_id=7,
        therapist_id=3,
        recurrence_type=RecurrenceType.WEEKLY,
        day_of_week=2,
        scheduled_time=time(14, 0),
        duration_minutes=60,
        start_date=date(2024, 1, 1),
    )
    base.update(kw)
    return TemplateDraft(**base)


def test_clinic_weekday_starts_on_sunday():
    assert clinic_weekday(date(2024, 1, 7)) == 0  # Sunday
    assert clinic_weekday(date(2024, 1, 1)) == 1  # Monday
    assert clinic_weekday(date(2024, 1, 6)) == 6  # Saturday


def test_first_occurrence_advances_to_requested_weekday():
    assert first_occurrence(date(2024, 1, 1), 2) == date(2024, 1, 2)
    assert first_occurrence(date(2024, 1, 2), 2) == date(2024, 1, 2)
    assert first_occurrence(date(2024, 1, 3), 2) == date(2024, 1, 9)


def test_weekly_tuesday_from_monday_start():
    slots = expand(rule(), weeks_ahead=4)
    assert [s.date for s in slots] == [date(2024, 1, 2), date(2024, 1, 9), date(2024, 1, 16), date(2024, 1, 23)]
    assert all(s.time == time(14, 0) and s.duration_minutes == 60 for s in slots)


def test_weekly_never_produces_another_weekday():
    slots = expand(rule(day_of_week=3, start_date=date(2024, 1, 3)), weeks_ahead=16)
    assert slots
    assert all(clinic_weekday(s.date) == 3 for s in slots)


def test_monthly_is_fixed_28_day_step():
    slots = expand(rule(recurrence_type=RecurrenceType.MONTHLY), weeks_ahead=16)
    assert len(slots) == 4
    gaps = {(b.date - a.date).days for a, b in zip(slots, slots[1:])}
    assert gaps == {28}


def test_biweekly_step():
    slots = expand(rule(recurrence_type=RecurrenceType.BIWEEKLY), weeks_ahead=6)
    assert [s.date for s in slots] == [date(2024, 1, 2), date(2024, 1, 16), date(2024, 1, 30)]


def test_window_start_keeps_phase_anchored_at_template_start():
    slots = expand(rule(recurrence_type=RecurrenceType.BIWEEKLY), window_start=date(2024, 1, 10), weeks_ahead=4)
    assert [s.date for s in slots] == [date(2024, 1, 16), date(2024, 1, 30)]


def test_end_date_bounds_output():
    slots = expand(rule(end_date=date(2024, 1, 16)), weeks_ahead=8)
    assert [s.date for s in slots] == [date(2024, 1, 2), date(2024, 1, 9), date(2024, 1, 16)]


def test_explicit_window_end_is_inclusive():
    slots = expand(rule(), window_end=date(2024, 1, 9))
    assert [s.date for s in slots] == [date(2024, 1, 2), date(2024, 1, 9)]


def test_weeks_ahead_is_capped():
    slots = expand(rule(), weeks_ahead=40, max_weeks=16)
    assert len(slots) == 16
    assert slots[-1].date <= date(2024, 1, 1) + timedelta(weeks=16)


def test_empty_window_returns_nothing():
    assert expand(rule(end_date=date(2024, 1, 1))) == []


def test_end_before_start_is_rejected():
    with pytest.raises(ValidationError):
        expand(rule(end_date=date(2023, 12, 31)))


@pytest.mark.parametrize("bad", [dict(day_of_week=7), dict(duration_minutes=10), dict(duration_minutes=300), dict(recurrence_type="daily")])
def test_invalid_rules_are_rejected(bad):
    with pytest.raises(ValidationError):
        expand(rule(**bad))


def test_weeks_ahead_must_be_positive():
    with pytest.raises(ValidationError):
        expand(rule(), weeks_ahead=0)
