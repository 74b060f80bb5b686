"""Expansion of a recurrence template into concrete dated slots.

Weekdays follow the clinic convention Sunday=0 .. Saturday=6. The monthly
cadence is a fixed 28-day step; it drifts against the calendar month and is
kept that way because generated series and reports already depend on it.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from ...exceptions import ValidationError
from ..ports.templates_repo import RecurrenceType

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 240
DEFAULT_MAX_WEEKS = 16


@dataclass(frozen=True)
class Slot:
    date: date
    time: time
    duration_minutes: int

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.time)

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)


def clinic_weekday(d: date) -> int:
    """Weekday of ``d`` with Sunday=0."""
    return (d.weekday() + 1) % 7


def first_occurrence(start_date: date, day_of_week: int) -> date:
    offset = (day_of_week - clinic_weekday(start_date) + 7) % 7
    return start_date + timedelta(days=offset)


def validate_rule(rule) -> None:
    if rule.start_date is None:
        raise ValidationError("start_date is required")
    if rule.day_of_week is None or not 0 <= int(rule.day_of_week) <= 6:
        raise ValidationError("day_of_week must be an integer between 0 (Sunday) and 6 (Saturday)")
    try:
        RecurrenceType(rule.recurrence_type)
    except ValueError:
        raise ValidationError(f"recurrence_type must be one of: {[r.value for r in RecurrenceType]}")
    if rule.scheduled_time is None:
        raise ValidationError("scheduled_time is required")
    if not MIN_DURATION_MINUTES <= int(rule.duration_minutes) <= MAX_DURATION_MINUTES:
        raise ValidationError(f"duration_minutes must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES}")
    if rule.end_date is not None and rule.end_date < rule.start_date:
        raise ValidationError("end_date cannot be before start_date")


def expand(
    rule,
    window_start: Optional[date] = None,
    weeks_ahead: Optional[int] = None,
    window_end: Optional[date] = None,
    max_weeks: int = DEFAULT_MAX_WEEKS,
) -> List[Slot]:
    """Return the ordered occurrences of ``rule`` inside the generation window.

    ``rule`` is anything exposing the template fields (``start_date``,
    ``end_date``, ``day_of_week``, ``recurrence_type``, ``scheduled_time``,
    ``duration_minutes``). The window starts at ``window_start`` (defaults to
    the rule's start date) and ends either at ``window_end`` (inclusive) or
    ``weeks_ahead`` weeks later (exclusive, capped to ``max_weeks``). The
    rule's ``end_date`` always bounds the output. The stepping phase is
    anchored at the rule's first occurrence, never at ``window_start``.
    """
    validate_rule(rule)

    start = window_start or rule.start_date
    if window_end is None:
        weeks = weeks_ahead if weeks_ahead is not None else 4
        if weeks < 1:
            raise ValidationError("weeks_ahead must be at least 1")
        weeks = min(weeks, max_weeks)
        last = start + timedelta(days=weeks * 7 - 1)
    else:
        last = window_end
    if rule.end_date is not None and rule.end_date < last:
        last = rule.end_date

    step = timedelta(days=RecurrenceType(rule.recurrence_type).step_days)
    current = first_occurrence(rule.start_date, int(rule.day_of_week))
    if current < start:
        # jump close to the window without breaking the phase
        skipped = (start - current).days // step.days
        current += step * skipped
        while current < start:
            current += step

    slots = []
    while current <= last:
        slots.append(Slot(date=current, time=rule.scheduled_time, duration_minutes=int(rule.duration_minutes)))
        current += step
    return slots
