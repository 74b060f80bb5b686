from datetime import date, datetime

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from clinic_scheduling.auth import AuthContext, get_auth_context
from clinic_scheduling.core.config import settings
from clinic_scheduling.database import get_session
from clinic_scheduling.db.models import TherapySession
from clinic_scheduling.main import create_app
from clinic_scheduling.routers.deps import get_clock

from .conftest import FixedClock

THERAPIST = AuthContext(user_id=3, clinic_id=1, role="therapist", has_pro_access=True)
ADMIN = AuthContext(user_id=1, clinic_id=1, role="admin", has_pro_access=True)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def api(engine):
    app = create_app()
    clock = FixedClock(datetime(2023, 12, 28, 9, 0))
    state = {"auth": THERAPIST}

    def session_override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = session_override
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_auth_context] = lambda: state["auth"]
    client = TestClient(app)
    client.clock = clock
    client.state = state
    return client


def book(api, **kw):
    body = {"patient_id": 7, "therapist_id": 3, "scheduled_date": "2024-01-02", "scheduled_time": "10:00", "duration_minutes": 60}
    body.update(kw)
    return api.post("/api/appointments/", json=body)


def test_health(api):
    res = api.get("/health")
    assert res.status_code == 200
    assert res.json()["service"] == settings.APP_NAME


def test_create_template_generates_instances(api):
    res = api.post("/api/recurring-templates/", json={
        "patient_id": 7,
        "therapist_id": 3,
        "recurrence_type": "weekly",
        "day_of_week": 2,
        "start_date": "2024-01-01",
        "scheduled_time": "14:00",
        "duration_minutes": 60,
        "generate_weeks_ahead": 4,
    })
    assert res.status_code == 201
    body = res.json()
    assert [a["scheduled_date"] for a in body["generated"]] == ["2024-01-02", "2024-01-09", "2024-01-16", "2024-01-23"]
    assert body["template"]["status"] == "active"

    template_id = body["template"]["id"]
    paused = api.post(f"/api/recurring-templates/{template_id}/pause", json={"reason": "ferias"})
    assert paused.json()["status"] == "paused"
    listed = api.get("/api/recurring-templates/", params={"status": "paused"})
    assert [t["id"] for t in listed.json()] == [template_id]

    deleted = api.request("DELETE", f"/api/recurring-templates/{template_id}/series", json={"reason": "alta"})
    assert deleted.status_code == 200
    assert deleted.json()["deleted_count"] == 4
    assert deleted.json()["template"]["status"] == "inactive"


def test_invalid_template_is_a_400(api):
    res = api.post("/api/recurring-templates/", json={
        "patient_id": 7, "therapist_id": 3, "day_of_week": 9, "start_date": "2024-01-01", "scheduled_time": "14:00",
    })
    assert res.status_code == 400
    assert res.json()["kind"] == "validation_error"
    assert res.json()["success"] is False


def test_conflicting_booking(api):
    assert book(api).status_code == 201
    res = book(api, patient_id=8, scheduled_time="10:30")
    assert res.status_code == 409
    body = res.json()
    assert body["kind"] == "conflict"
    assert body["conflicts"][0]["party"] == "therapist"
    assert book(api, patient_id=8, scheduled_time="11:00").status_code == 201


def test_cancel_then_delete(api):
    appt_id = book(api).json()["id"]
    short = api.post(f"/api/appointments/{appt_id}/cancel", json={"reason_type": "outro", "reason_description": "viajou"})
    assert short.status_code == 422

    res = api.post(f"/api/appointments/{appt_id}/cancel", json={"reason_type": "outro", "reason_description": "paciente viajou"})
    assert res.status_code == 200
    assert res.json()["status"] == "cancelled"
    assert res.json()["cancellation_reason_type"] == "outro"
    assert res.json()["cancellation_reason_description"] == "paciente viajou"

    res = api.delete(f"/api/appointments/{appt_id}")
    assert res.status_code == 409
    assert res.json()["kind"] == "invalid_state"


def test_missing_appointment(api):
    res = api.get("/api/appointments/999")
    assert res.status_code == 404
    assert res.json()["kind"] == "not_found"


def test_discipline_requires_pro_plan(api):
    api.state["auth"] = AuthContext(user_id=3, clinic_id=1, role="therapist", has_pro_access=False)
    assert book(api, discipline_id=5).status_code == 403
    assert book(api).status_code == 201


def test_sweep_and_justify_once(api):
    appt_id = book(api).json()["id"]
    api.clock.current = datetime(2024, 1, 3, 9, 0)

    assert api.post("/api/maintenance/mark-missed", json={"grace_hours": 2}).status_code == 403

    api.state["auth"] = ADMIN
    res = api.post("/api/maintenance/mark-missed", json={"grace_hours": 2})
    assert res.json() == {"count": 1, "appointment_ids": [appt_id]}
    assert api.post("/api/maintenance/mark-missed", json={"grace_hours": 2}).json()["count"] == 0
    assert api.post("/api/maintenance/mark-missed", json={"grace_hours": 48}).status_code == 400

    body = {"reason_type": "patient_illness", "reason_description": "febre", "missed_by": "patient"}
    first = api.post(f"/api/appointments/{appt_id}/justify", json=body)
    assert first.status_code == 200
    assert first.json()["is_admin_override"] is True
    second = api.post(f"/api/appointments/{appt_id}/justify", json=body)
    assert second.status_code == 409
    assert second.json()["kind"] == "already_justified"

    pending = api.get("/api/reconciliation/pending-actions")
    assert pending.json()["unjustified_missed"] == []


def test_only_assigned_therapist_or_admin_justifies(api):
    appt_id = book(api).json()["id"]
    api.clock.current = datetime(2024, 1, 3, 9, 0)
    api.state["auth"] = ADMIN
    api.post("/api/maintenance/mark-missed", json={"grace_hours": 2})

    body = {"reason_type": "patient_illness", "reason_description": "febre", "missed_by": "patient"}
    api.state["auth"] = AuthContext(user_id=99, clinic_id=1, role="therapist", has_pro_access=True)
    res = api.post(f"/api/appointments/{appt_id}/justify", json=body)
    assert res.status_code == 403
    assert api.get(f"/api/appointments/{appt_id}").json()["justified_at"] is None

    api.state["auth"] = THERAPIST
    res = api.post(f"/api/appointments/{appt_id}/justify", json=body)
    assert res.status_code == 200
    assert res.json()["justified_by"] == THERAPIST.user_id
    assert res.json()["is_admin_override"] is False


def test_complete_with_unknown_session_is_a_404(api):
    appt_id = book(api).json()["id"]
    res = api.post(f"/api/appointments/{appt_id}/complete", json={"linked_session_id": 123456})
    assert res.status_code == 404
    assert res.json()["kind"] == "not_found"
    assert api.get(f"/api/appointments/{appt_id}").json()["status"] == "scheduled"


def test_orphan_sessions_and_retroactive_batch(api, engine):
    api.clock.current = datetime(2024, 2, 12, 9, 0)
    with Session(engine) as s:
        rows = [TherapySession(clinic_id=1, patient_id=7, therapist_id=3, session_date=date(2024, 2, d)) for d in (5, 6, 7)]
        for row in rows:
            s.add(row)
        s.commit()
        ids = [row.id for row in rows]

    report = api.get("/api/reconciliation/detect", params={"date_from": "2024-02-01", "date_to": "2024-02-29"})
    assert [s["id"] for s in report.json()["orphan_sessions"]] == ids

    single = api.post("/api/reconciliation/retroactive", json={"session_id": ids[0]})
    assert single.status_code == 201
    assert single.json()["status"] == "completed"
    assert single.json()["linked_session_id"] == ids[0]

    batch = api.post("/api/reconciliation/retroactive/batch", json={"session_ids": ids})
    assert batch.status_code == 200
    assert batch.json()["created"] == 2
    assert batch.json()["total"] == 3
    assert batch.json()["errors"][0]["item"] == ids[0]

    report = api.get("/api/reconciliation/detect", params={"date_from": "2024-02-01", "date_to": "2024-02-29"})
    assert report.json()["orphan_sessions"] == []


def test_auto_resolve_and_maintenance_run(api, engine):
    appt_id = book(api).json()["id"]
    with Session(engine) as s:
        s.add(TherapySession(clinic_id=1, patient_id=7, therapist_id=3, session_date=date(2024, 1, 2)))
        s.commit()
    api.clock.current = datetime(2024, 1, 3, 9, 0)

    res = api.post("/api/reconciliation/auto-resolve", json={"date_from": "2024-01-01", "date_to": "2024-01-07"})
    assert res.json()["resolved_count"] == 1
    assert api.get(f"/api/appointments/{appt_id}").json()["status"] == "completed"

    api.state["auth"] = ADMIN
    summary = api.post("/api/maintenance/run").json()["summary"]
    assert summary["auto_resolved"] == 0
    assert summary["marked_missed"] == 0


def test_bearer_token_is_verified(engine, monkeypatch):
    monkeypatch.setattr(settings, "SECRET_KEY", "test-secret")
    app = create_app()

    def session_override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = session_override
    app.dependency_overrides[get_clock] = lambda: FixedClock(datetime(2023, 12, 28, 9, 0))
    client = TestClient(app)

    assert client.get("/api/appointments/").status_code == 401

    token = jwt.encode({"sub": "3", "clinic_id": 1, "role": "therapist"}, "test-secret", algorithm=settings.ALGORITHM)
    res = client.get("/api/appointments/", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200
    assert res.json() == []

    forged = jwt.encode({"sub": "3", "clinic_id": 1}, "other-secret", algorithm=settings.ALGORITHM)
    assert client.get("/api/appointments/", headers={"Authorization": f"Bearer {forged}"}).status_code == 401
