from dataclasses import replace
from datetime import date, datetime, time

import pytest

from clinic_scheduling.application.ports.appointments_repo import (
    AppointmentDraft,
    AppointmentDto,
    AppointmentStatus,
)
from clinic_scheduling.application.ports.templates_repo import TemplateDraft, TemplateDto
from clinic_scheduling.application.ports.therapy_sessions_repo import TherapySessionDto
from clinic_scheduling.application.services.lifecycle_service import AppointmentLifecycleService
from clinic_scheduling.application.services.reconciliation_service import ReconciliationService
from clinic_scheduling.application.services.series_service import RecurringSeriesService
from clinic_scheduling.application.services.sweeper_service import MissedAppointmentSweeper

CLINIC = 1


class FixedClock:
    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return self.current.date()


class FakeAudit:
    def __init__(self):
        self.entries = []

    def log(self, action, clinic_id, user_id=None, entity_id=None, success=True, details=None):
        self.entries.append({"action": action, "clinic_id": clinic_id, "user_id": user_id, "entity_id": entity_id, "details": details or {}})

    def actions(self):
        return [e["action"] for e in self.entries]


class FakeAppointmentsRepo:
    def __init__(self):
        self._id = 1
        self.rows = {}
        self.fail_on_delete = set()

    def add(self, draft: AppointmentDraft) -> AppointmentDto:
        appt = AppointmentDto(id=self._id, created_at=datetime(2024, 1, 1), updated_at=datetime(2024, 1, 1), **draft.__dict__)
        self.rows[appt.id] = appt
        self._id += 1
        return appt

    def get(self, clinic_id, appointment_id):
        a = self.rows.get(appointment_id)
        return a if a and a.clinic_id == clinic_id else None

    def list(self, clinic_id, date_from=None, date_to=None, status=None, patient_id=None, therapist_id=None):
        out = [
            a for a in self.rows.values()
            if a.clinic_id == clinic_id
            and (date_from is None or a.scheduled_date >= date_from)
            and (date_to is None or a.scheduled_date <= date_to)
            and (status is None or a.status == status)
            and (patient_id is None or a.patient_id == patient_id)
            and (therapist_id is None or a.therapist_id == therapist_id)
        ]
        return sorted(out, key=lambda a: (a.scheduled_date, a.scheduled_time, a.id))

    def list_for_parties_on_date(self, clinic_id, scheduled_date, patient_id, therapist_id):
        return [
            a for a in self.list(clinic_id, date_from=scheduled_date, date_to=scheduled_date)
            if a.status != AppointmentStatus.CANCELLED and (a.patient_id == patient_id or a.therapist_id == therapist_id)
        ]

    def list_for_template(self, clinic_id, template_id, date_from=None, status=None):
        return [a for a in self.list(clinic_id, date_from=date_from, status=status) if a.recurring_template_id == template_id]

    def latest_date_for_template(self, clinic_id, template_id):
        dates = [a.scheduled_date for a in self.list_for_template(clinic_id, template_id)]
        return max(dates) if dates else None

    def linked_session_ids(self, clinic_id, session_ids):
        wanted = set(session_ids)
        return {a.linked_session_id for a in self.rows.values() if a.clinic_id == clinic_id and a.linked_session_id in wanted}

    def list_scheduled_until(self, cutoff, clinic_id=None):
        return [
            a for a in sorted(self.rows.values(), key=lambda a: (a.scheduled_date, a.scheduled_time))
            if a.status == AppointmentStatus.SCHEDULED
            and a.scheduled_date <= cutoff
            and (clinic_id is None or a.clinic_id == clinic_id)
        ]

    def save(self, appointment):
        self.rows[appointment.id] = appointment
        return appointment

    def delete(self, clinic_id, appointment_id):
        if appointment_id in self.fail_on_delete:
            raise RuntimeError("database is locked")
        self.rows.pop(appointment_id, None)


class FakeTemplatesRepo:
    def __init__(self):
        self._id = 1
        self.rows = {}

    def add(self, draft: TemplateDraft) -> TemplateDto:
        t = TemplateDto(id=self._id, created_at=datetime(2024, 1, 1), updated_at=datetime(2024, 1, 1), **draft.__dict__)
        self.rows[t.id] = t
        self._id += 1
        return t

    def get(self, clinic_id, template_id):
        t = self.rows.get(template_id)
        return t if t and t.clinic_id == clinic_id else None

    def list(self, clinic_id, patient_id=None, therapist_id=None):
        return [
            t for t in self.rows.values()
            if t.clinic_id == clinic_id
            and (patient_id is None or t.patient_id == patient_id)
            and (therapist_id is None or t.therapist_id == therapist_id)
        ]

    def save(self, template):
        self.rows[template.id] = replace(template)
        return self.rows[template.id]


class FakeSessionsRepo:
    def __init__(self):
        self._id = 100
        self.rows = {}

    def record(self, session_date, patient_id, therapist_id, session_time=None, clinic_id=CLINIC):
        s = TherapySessionDto(id=self._id, clinic_id=clinic_id, patient_id=patient_id, therapist_id=therapist_id, session_date=session_date, session_time=session_time)
        self.rows[s.id] = s
        self._id += 1
        return s

    def get(self, clinic_id, session_id):
        s = self.rows.get(session_id)
        return s if s and s.clinic_id == clinic_id else None

    def list_in_range(self, clinic_id, date_from, date_to):
        return sorted(
            (s for s in self.rows.values() if s.clinic_id == clinic_id and date_from <= s.session_date <= date_to),
            key=lambda s: (s.session_date, s.id),
        )


def make_draft(scheduled_date, scheduled_time=time(10, 0), patient_id=7, therapist_id=3, duration_minutes=60, **kw):
    return AppointmentDraft(
        clinic_id=CLINIC,
        patient_id=patient_id,
        therapist_id=therapist_id,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        duration_minutes=duration_minutes,
        created_by=kw.pop("created_by", 3),
        **kw,
    )


@pytest.fixture
def clock():
    return FixedClock(datetime(2023, 12, 28, 9, 0))


@pytest.fixture
def audit():
    return FakeAudit()


@pytest.fixture
def appointments():
    return FakeAppointmentsRepo()


@pytest.fixture
def templates():
    return FakeTemplatesRepo()


@pytest.fixture
def sessions():
    return FakeSessionsRepo()


@pytest.fixture
def lifecycle(appointments, clock, audit, sessions):
    return AppointmentLifecycleService(repo=appointments, clock=clock, audit=audit, sessions=sessions)


@pytest.fixture
def series(templates, appointments, lifecycle, clock, audit):
    return RecurringSeriesService(templates=templates, appointments=appointments, lifecycle=lifecycle, clock=clock, audit=audit)


@pytest.fixture
def reconciliation(appointments, sessions, lifecycle, clock):
    return ReconciliationService(appointments=appointments, sessions=sessions, lifecycle=lifecycle, clock=clock)


@pytest.fixture
def sweeper(appointments, lifecycle, clock):
    return MissedAppointmentSweeper(appointments=appointments, lifecycle=lifecycle, clock=clock)
