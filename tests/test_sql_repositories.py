from dataclasses import replace
from datetime import date, datetime, time

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from clinic_scheduling.application.ports.appointments_repo import (
    AppointmentDraft,
    AppointmentStatus,
    CancellationReason,
    Cancelled,
    Completed,
    Justification,
    Missed,
    MissedBy,
    MissedReason,
    Scheduled,
)
from clinic_scheduling.application.ports.templates_repo import (
    RecurrenceType,
    TemplateDeactivation,
    TemplateDraft,
    TemplatePause,
    TemplateStatus,
)
from clinic_scheduling.db.models import Appointment, TherapySession
from clinic_scheduling.infrastructure.persistence.sqlalchemy.repositories.appointments_repository_sql import SqlAppointmentsRepository
from clinic_scheduling.infrastructure.persistence.sqlalchemy.repositories.templates_repository_sql import SqlTemplatesRepository
from clinic_scheduling.infrastructure.persistence.sqlalchemy.repositories.therapy_sessions_repository_sql import SqlTherapySessionsRepository

NOW = datetime(2024, 1, 2, 12, 0)


@pytest.fixture
def session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as s:
        yield s


def draft(scheduled_date=date(2024, 1, 2), scheduled_time=time(10, 0), **kw):
    return AppointmentDraft(clinic_id=1, patient_id=kw.pop("patient_id", 7), therapist_id=kw.pop("therapist_id", 3), scheduled_date=scheduled_date, scheduled_time=scheduled_time, duration_minutes=60, **kw)


def test_state_variants_round_trip_through_flat_columns(session):
    repo = SqlAppointmentsRepository(session)
    appt = repo.add(draft())
    assert appt.state == Scheduled()

    completed = repo.save(replace(appt, state=Completed(completed_at=NOW, linked_session_id=42), updated_at=NOW))
    assert completed.state == Completed(completed_at=NOW, linked_session_id=42)

    justification = Justification(justified_at=NOW, justified_by=3, reason_type=MissedReason.PATIENT_ILLNESS, reason_description="febre", missed_by=MissedBy.PATIENT)
    missed = repo.save(replace(completed, state=Missed(missed_at=NOW, justification=justification), updated_at=NOW))
    assert missed.state.justification == justification
    assert missed.linked_session_id is None

    cancelled_state = Cancelled(cancelled_at=NOW, cancelled_by=4, reason_type=CancellationReason.HOLIDAY, reason_description="feriado")
    cancelled = repo.save(replace(missed, state=cancelled_state, updated_at=NOW))
    assert cancelled.state == cancelled_state
    assert cancelled.justification is None
    row = session.get(Appointment, cancelled.id)
    assert row.cancellation_reason_description == "feriado"
    assert row.missed_reason_description is None


def test_queries_are_scoped_and_filtered(session):
    repo = SqlAppointmentsRepository(session)
    a = repo.add(draft())
    b = repo.add(draft(date(2024, 1, 3), patient_id=8, therapist_id=4, recurring_template_id=None))
    other_clinic = repo.add(replace(draft(), clinic_id=2))

    assert repo.get(2, a.id) is None
    assert [x.id for x in repo.list(1)] == [a.id, b.id]
    assert [x.id for x in repo.list(1, date_from=date(2024, 1, 3))] == [b.id]
    assert [x.id for x in repo.list(1, therapist_id=4)] == [b.id]
    assert repo.list(2)[0].id == other_clinic.id

    repo.save(replace(b, state=Cancelled(cancelled_at=NOW, cancelled_by=1, reason_type=CancellationReason.OTHER, reason_description="x")))
    assert [x.id for x in repo.list(1, status=AppointmentStatus.CANCELLED)] == [b.id]
    assert repo.list_for_parties_on_date(1, date(2024, 1, 3), 8, 4) == []
    assert [x.id for x in repo.list_for_parties_on_date(1, date(2024, 1, 2), 99, 3)] == [a.id]


def test_template_instances_and_links(session):
    templates = SqlTemplatesRepository(session)
    repo = SqlAppointmentsRepository(session)
    t = templates.add(TemplateDraft(clinic_id=1, patient_id=7, therapist_id=3, recurrence_type=RecurrenceType.WEEKLY, day_of_week=2, scheduled_time=time(14, 0), duration_minutes=60, start_date=date(2024, 1, 1)))
    for d in (2, 9, 16):
        repo.add(draft(date(2024, 1, d), recurring_template_id=t.id))
    repo.add(draft(date(2024, 1, 20), state=Completed(completed_at=NOW, linked_session_id=77)))

    assert repo.latest_date_for_template(1, t.id) == date(2024, 1, 16)
    assert [a.scheduled_date.day for a in repo.list_for_template(1, t.id, date_from=date(2024, 1, 9))] == [9, 16]
    assert repo.linked_session_ids(1, [76, 77]) == {77}
    assert repo.linked_session_ids(1, []) == set()
    assert [a.scheduled_date.day for a in repo.list_scheduled_until(date(2024, 1, 9))] == [2, 9]


def test_delete(session):
    repo = SqlAppointmentsRepository(session)
    a = repo.add(draft())
    repo.delete(1, a.id)
    assert repo.get(1, a.id) is None


def test_template_pause_and_deactivation_persist(session):
    templates = SqlTemplatesRepository(session)
    t = templates.add(TemplateDraft(clinic_id=1, patient_id=7, therapist_id=3, recurrence_type="biweekly", day_of_week=5, scheduled_time=time(9, 0), duration_minutes=45, start_date=date(2024, 1, 1)))
    assert t.recurrence_type == RecurrenceType.BIWEEKLY

    paused = templates.save(replace(t, pause=TemplatePause(reason="viagem", paused_at=NOW, paused_until=date(2024, 2, 1))))
    assert paused.status_on(date(2024, 1, 2)) == TemplateStatus.PAUSED
    assert paused.pause.paused_until == date(2024, 2, 1)

    resumed = templates.save(replace(paused, pause=None))
    assert resumed.pause is None
    assert resumed.status_on(date(2024, 1, 2)) == TemplateStatus.ACTIVE

    inactive = templates.save(replace(resumed, deactivation=TemplateDeactivation(reason="alta", deactivated_at=NOW, deactivated_by=3)))
    assert templates.get(1, t.id).status_on(date(2024, 1, 2)) == TemplateStatus.INACTIVE
    assert inactive.deactivation.deactivated_by == 3
    assert templates.list(1, patient_id=7)[0].id == t.id
    assert templates.get(2, t.id) is None


def test_therapy_sessions_read(session):
    session.add(TherapySession(clinic_id=1, patient_id=7, therapist_id=3, session_date=date(2024, 2, 10), program_ids=[1, 2], detail={"trials": 10}))
    session.add(TherapySession(clinic_id=1, patient_id=7, therapist_id=3, session_date=date(2024, 3, 1)))
    session.commit()

    repo = SqlTherapySessionsRepository(session)
    found = repo.list_in_range(1, date(2024, 2, 1), date(2024, 2, 29))
    assert len(found) == 1
    assert found[0].program_ids == [1, 2]
    assert found[0].detail == {"trials": 10}
    assert repo.get(1, found[0].id).session_date == date(2024, 2, 10)
    assert repo.get(2, found[0].id) is None
