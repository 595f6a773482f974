import asyncio
from decimal import Decimal

import pytest

from abby.errors import PermissionDeniedError
from abby.models import User
from abby.services.auth_service import require_role
from abby.services import certification as cert_service
from abby.services import events
from factories import (
    ALL_CORRECT, FOUR_CORRECT, auth_headers, make_certifications, make_doctor, make_session, make_user,
)


@pytest.fixture
def client_user(in_db):
    async def setup(db):
        await make_certifications(db)
        return await make_user(db)
    return in_db(setup)


@pytest.fixture
def headers(client_user):
    return auth_headers(client_user)


def test_requires_token(api):
    r = api.get("/client/dashboard")
    assert r.status_code == 401


def test_requires_client_role(api, in_db):
    doctor = in_db(make_doctor)
    r = api.get("/client/dashboard", headers=auth_headers(doctor))
    assert r.status_code == 403
    assert r.json()["detail"] == "Insufficient permissions"


def test_role_check_raises_domain_error():
    checker = require_role("admin")
    with pytest.raises(PermissionDeniedError):
        asyncio.run(checker(current_user=User(id=1, role="client")))
    admin = User(id=2, role="admin")
    assert asyncio.run(checker(current_user=admin)) is admin


def test_inactive_user_is_rejected(api, in_db):
    user = in_db(lambda db: make_user(db, is_active=False))
    r = api.get("/client/dashboard", headers=auth_headers(user))
    assert r.status_code == 401


def test_request_human_session_without_doctor(api, headers):
    r = api.post("/client/sessions/request", headers=headers, json={
        "preferred_date": "2026-11-02",
        "preferred_time": "10:30",
        "reason": "Trouble sleeping",
    })
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "pending_approval"
    assert body["type"] == "human"
    assert body["doctor"] is None
    assert body["scheduled_at"].startswith("2026-11-02T10:30")


def test_request_human_session_missing_reason(api, headers):
    r = api.post("/client/sessions/request", headers=headers, json={
        "preferred_date": "2026-11-02",
        "preferred_time": "10:30",
    })
    assert r.status_code == 400
    assert r.json()["detail"] == "Preferred date, time, and reason are required"


def test_request_with_unknown_doctor(api, headers):
    r = api.post("/client/sessions/request", headers=headers, json={
        "preferred_date": "2026-11-02",
        "preferred_time": "10:30",
        "reason": "x",
        "doctor_id": 9999,
    })
    assert r.status_code == 404


def test_ai_session_complete_with_quiz(api, headers, monkeypatch):
    published = []

    async def capture(event_type, key, payload):
        published.append((event_type, payload))
        return True

    monkeypatch.setattr(events, "publish_event", capture)

    created = api.post("/client/sessions/ai", headers=headers, json={"topic": "Stress"})
    assert created.status_code == 201
    session = created.json()
    assert session["status"] == "in_progress"
    assert session["started_at"] is not None

    r = api.post(f"/client/sessions/{session['id']}/complete", headers=headers, json={
        "quiz_answers": FOUR_CORRECT, "rating": 4, "feedback": "Calmer now",
    })
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Session completed successfully"
    assert body["session"]["status"] == "completed"
    assert body["session"]["client_rating"] == 4
    assert body["session"]["quiz_result"]["score"] == 80
    assert body["quiz_result"]["correct"] == [True, True, True, True, False]
    assert body["counted_for_certification"] is True
    assert body["certification_warning"] is None

    assert [e for e, _ in published] == ["session.completed"]
    assert published[0][1]["quiz_score"] == 80

    again = api.post(f"/client/sessions/{session['id']}/complete", headers=headers, json={})
    assert again.status_code == 409


def test_two_passing_sessions_earn_first_certification(api, headers, monkeypatch):
    published = []

    async def capture(event_type, key, payload):
        published.append(event_type)
        return True

    monkeypatch.setattr(events, "publish_event", capture)

    for answers in (FOUR_CORRECT, ALL_CORRECT):
        sid = api.post("/client/sessions/ai", headers=headers, json={}).json()["id"]
        r = api.post(f"/client/sessions/{sid}/complete", headers=headers, json={"quiz_answers": answers})
        assert r.status_code == 200

    assert len(r.json()["earned_certification_ids"]) == 1
    assert published.count("certification.earned") == 1

    certs = api.get("/client/certifications", headers=headers).json()
    by_name = {c["certification"]["name"]: c for c in certs}
    anxiety = by_name["Anxiety Management Basics"]
    assert anxiety["status"] == "completed"
    assert anxiety["is_unlocked"] is True
    assert anxiety["progress_percentage"] == 100
    assert anxiety["user_progress"]["earned_at"] is not None
    others = [c for name, c in by_name.items() if name != "Anxiety Management Basics"]
    assert all(c["status"] == "in_progress" and c["progress_percentage"] < 100 for c in others)

    dashboard = api.get("/client/dashboard", headers=headers).json()
    assert dashboard["stats"] == {
        "completed_sessions": 2,
        "completed_quizzes": 2,
        "certifications_earned": 1,
        "progress_level": 2,
    }
    assert len(dashboard["recent_sessions"]) == 2
    assert dashboard["next_session"] is None


def test_completion_survives_progress_failure(api, headers, monkeypatch):
    async def boom(db, user_id):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(cert_service, "load_counters", boom)

    sid = api.post("/client/sessions/ai", headers=headers, json={}).json()["id"]
    r = api.post(f"/client/sessions/{sid}/complete", headers=headers, json={"quiz_answers": ALL_CORRECT})
    assert r.status_code == 200
    body = r.json()
    assert body["session"]["status"] == "completed"
    assert "could not be updated" in body["certification_warning"]


def test_invalid_quiz_answers(api, headers):
    sid = api.post("/client/sessions/ai", headers=headers, json={}).json()["id"]
    r = api.post(f"/client/sessions/{sid}/complete", headers=headers, json={"quiz_answers": [0, 1]})
    assert r.status_code == 400
    assert api.get(f"/client/sessions/{sid}", headers=headers).json()["status"] == "in_progress"


def test_quiz_after_doctor_completion(api, in_db, client_user, headers):
    async def setup(db):
        doctor = await make_doctor(db)
        return await make_session(db, client_user, doctor=doctor, status="completed")

    session = in_db(setup)
    r = api.post(f"/client/sessions/{session.id}/quiz", headers=headers, json={"answers": ALL_CORRECT})
    assert r.status_code == 200
    assert r.json()["message"] == "Quiz submitted successfully"
    assert r.json()["quiz_result"]["score"] == 100

    dup = api.post(f"/client/sessions/{session.id}/quiz", headers=headers, json={"answers": ALL_CORRECT})
    assert dup.status_code == 409


def test_cancel_pending_session(api, headers):
    sid = api.post("/client/sessions/request", headers=headers, json={
        "preferred_date": "2026-11-02", "preferred_time": "09:00", "reason": "x",
    }).json()["id"]
    r = api.post(f"/client/sessions/{sid}/cancel", headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    r = api.post(f"/client/sessions/{sid}/complete", headers=headers, json={})
    assert r.status_code == 409


def test_other_clients_session_is_hidden(api, in_db, headers):
    async def setup(db):
        other = await make_user(db)
        return await make_session(db, other, type="ai", status="in_progress")

    session = in_db(setup)
    assert api.get(f"/client/sessions/{session.id}", headers=headers).status_code == 404
    assert api.post(f"/client/sessions/{session.id}/complete", headers=headers, json={}).status_code == 404


def test_list_sessions_filters(api, headers):
    api.post("/client/sessions/ai", headers=headers, json={})
    api.post("/client/sessions/request", headers=headers, json={
        "preferred_date": "2026-11-02", "preferred_time": "09:00", "reason": "x",
    })
    assert len(api.get("/client/sessions", headers=headers).json()) == 2
    ai_only = api.get("/client/sessions", headers=headers, params={"type": "ai"}).json()
    assert [s["type"] for s in ai_only] == ["ai"]
    pending = api.get("/client/sessions", headers=headers, params={"status": "pending_approval"}).json()
    assert [s["status"] for s in pending] == ["pending_approval"]


def test_quiz_questions_hide_answers(api, headers):
    questions = api.get("/client/quiz/questions", headers=headers).json()
    assert len(questions) == 5
    assert all("correct_answer" not in q for q in questions)
    assert all(len(q["options"]) >= 2 for q in questions)


def test_progress_report(api, headers):
    for answers in (FOUR_CORRECT, ALL_CORRECT):
        sid = api.post("/client/sessions/ai", headers=headers, json={}).json()["id"]
        api.post(f"/client/sessions/{sid}/complete", headers=headers, json={"quiz_answers": answers})
    api.post("/client/sessions/request", headers=headers, json={
        "preferred_date": "2026-11-02", "preferred_time": "09:00", "reason": "x",
    })

    body = api.get("/client/progress", headers=headers).json()
    assert body["total_sessions"] == 3
    assert body["completed_sessions"] == 2
    assert body["ai_sessions"] == 2
    assert body["human_sessions"] == 1
    assert body["average_quiz_score"] == 90
    assert sorted(item["score"] for item in body["quiz_trend"]) == [80, 100]


def test_available_doctors_only_approved(api, in_db, headers):
    async def setup(db):
        await make_doctor(db, first_name="Approved")
        await make_doctor(db, approved=False, first_name="Waiting")

    in_db(setup)
    doctors = api.get("/client/doctors", headers=headers).json()
    assert [d["first_name"] for d in doctors] == ["Approved"]
    assert doctors[0]["doctor_profile"]["is_approved"] is True


def test_submit_and_list_payments(api, headers):
    r = api.post("/client/payments", headers=headers, json={
        "amount": 49.99, "payment_method": "paypal", "transaction_id": "PP-1",
    })
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "pending"
    assert body["is_verified"] is False
    assert Decimal(str(body["amount"])) == Decimal("49.99")

    bad = api.post("/client/payments", headers=headers, json={"amount": 10, "payment_method": "cash"})
    assert bad.status_code == 400
    zero = api.post("/client/payments", headers=headers, json={"amount": 0, "payment_method": "paypal"})
    assert zero.status_code == 400

    mine = api.get("/client/payments", headers=headers).json()
    assert len(mine) == 1
