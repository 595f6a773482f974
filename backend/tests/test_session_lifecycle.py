from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy import select

from abby.errors import InvalidTransitionError, NotFoundError, ValidationError
from abby.models import ClientProfile, QuizResult, UserCertification
from abby.services import session_lifecycle as lifecycle
from factories import (
    ALL_CORRECT, FOUR_CORRECT, TWO_CORRECT, make_certifications, make_doctor, make_session, make_user,
)


async def _counters(db, user_id):
    profile = await db.get(ClientProfile, user_id, populate_existing=True)
    return profile.total_sessions_completed, profile.total_quizzes_completed


# --- transition table ---

@pytest.mark.parametrize("action,current,target", [
    ("start", "scheduled", "in_progress"),
    ("client_complete", "scheduled", "completed"),
    ("client_complete", "pending_approval", "completed"),
    ("client_complete", "in_progress", "completed"),
    ("doctor_complete", "in_progress", "completed"),
    ("cancel", "scheduled", "cancelled"),
    ("cancel", "pending_approval", "cancelled"),
    ("assign_doctor", "pending_approval", "scheduled"),
])
def test_allowed_transitions(action, current, target):
    assert lifecycle.check_transition(action, current) == target


@pytest.mark.parametrize("action,current", [
    ("start", "pending_approval"),
    ("start", "completed"),
    ("doctor_complete", "scheduled"),
    ("client_complete", "completed"),
    ("client_complete", "cancelled"),
    ("cancel", "in_progress"),
    ("cancel", "completed"),
    ("assign_doctor", "in_progress"),
])
def test_rejected_transitions(action, current):
    with pytest.raises(InvalidTransitionError):
        lifecycle.check_transition(action, current)


# --- booking ---

def test_human_booking_without_doctor_waits_for_assignment(in_db):
    async def scenario(db):
        client = await make_user(db)
        return await lifecycle.book_human_session(
            db, client.id, preferred_date=date(2026, 11, 2), preferred_time=time(10, 30), reason="Anxiety at work"
        )

    session = in_db(scenario)
    assert session.status == "pending_approval"
    assert session.doctor_id is None
    assert session.doctor is None
    assert session.topic == "Anxiety at work"


def test_human_booking_with_doctor_is_scheduled(in_db):
    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db)
        return await lifecycle.book_human_session(
            db, client.id, preferred_date=date(2026, 11, 2), preferred_time=time(9, 0),
            reason="Follow-up", doctor_id=doctor.id,
        )

    session = in_db(scenario)
    assert session.status == "scheduled"
    assert session.doctor.full_name.startswith("Doctor")


@pytest.mark.parametrize("fields", [
    {"preferred_date": None, "preferred_time": time(9, 0), "reason": "x"},
    {"preferred_date": date(2026, 11, 2), "preferred_time": None, "reason": "x"},
    {"preferred_date": date(2026, 11, 2), "preferred_time": time(9, 0), "reason": "   "},
])
def test_human_booking_requires_date_time_and_reason(in_db, fields):
    async def scenario(db):
        client = await make_user(db)
        await lifecycle.book_human_session(db, client.id, **fields)

    with pytest.raises(ValidationError):
        in_db(scenario)


def test_human_booking_with_unapproved_doctor(in_db):
    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db, approved=False)
        await lifecycle.book_human_session(
            db, client.id, preferred_date=date(2026, 11, 2), preferred_time=time(9, 0),
            reason="x", doctor_id=doctor.id,
        )

    with pytest.raises(NotFoundError):
        in_db(scenario)


def test_ai_session_starts_immediately(in_db):
    async def scenario(db):
        client = await make_user(db)
        return await lifecycle.start_ai_session(db, client.id, topic=None)

    session = in_db(scenario)
    assert session.status == "in_progress"
    assert session.started_at is not None
    assert session.ai_model
    assert session.topic == "AI Therapy Session"


def test_ai_session_in_future_is_scheduled_then_started_by_client(in_db):
    future = datetime.now(timezone.utc) + timedelta(days=3)

    async def scenario(db):
        client = await make_user(db)
        booked = await lifecycle.start_ai_session(db, client.id, topic="Sleep", scheduled_at=future)
        booked_state = (booked.status, booked.started_at)
        started = await lifecycle.start_session(db, booked.id, client_id=client.id)
        return booked_state, started

    (status, started_at), started = in_db(scenario)
    assert status == "scheduled" and started_at is None
    assert started.status == "in_progress"
    assert started.started_at is not None


def test_client_cannot_start_human_session(in_db):
    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db)
        session = await make_session(db, client, doctor=doctor)
        await lifecycle.start_session(db, session.id, client_id=client.id)

    with pytest.raises(ValidationError):
        in_db(scenario)


# --- doctor start / complete ---

def test_doctor_start_only_from_scheduled(in_db):
    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db)
        session = await make_session(db, client, doctor=doctor, status="pending_approval")
        await lifecycle.start_session(db, session.id, doctor_id=doctor.id)

    with pytest.raises(InvalidTransitionError):
        in_db(scenario)


def test_doctor_cannot_touch_other_doctors_session(in_db):
    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db)
        other = await make_doctor(db)
        session = await make_session(db, client, doctor=doctor)
        await lifecycle.start_session(db, session.id, doctor_id=other.id)

    with pytest.raises(NotFoundError):
        in_db(scenario)


def test_doctor_complete_rejects_scheduled_session(in_db):
    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db)
        session = await make_session(db, client, doctor=doctor)
        await lifecycle.complete_session_by_doctor(db, session.id, doctor.id, notes="n")

    with pytest.raises(InvalidTransitionError):
        in_db(scenario)


def test_doctor_rating_must_be_one_to_five(in_db):
    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db)
        session = await make_session(db, client, doctor=doctor, status="in_progress")
        session_id = session.id
        with pytest.raises(ValidationError):
            await lifecycle.complete_session_by_doctor(db, session_id, doctor.id, doctor_rating=1000)
        return (await lifecycle.get_session(db, session_id)).status

    assert in_db(scenario) == "in_progress"


def test_doctor_start_then_complete(in_db):
    async def scenario(db):
        await make_certifications(db)
        client = await make_user(db)
        doctor = await make_doctor(db)
        session = await make_session(db, client, doctor=doctor)
        await lifecycle.start_session(db, session.id, doctor_id=doctor.id)
        result = await lifecycle.complete_session_by_doctor(
            db, session.id, doctor.id, notes="Breathing exercises", doctor_rating=4, summary="Good progress"
        )
        return result, await _counters(db, client.id)

    result, counters = in_db(scenario)
    assert result.session.status == "completed"
    assert result.session.ended_at is not None
    assert result.session.notes == "Breathing exercises"
    assert result.quiz_result is None
    assert result.certification_warning is None
    # 퀴즈 없는 완료는 카운트되지 않는다
    assert counters == (0, 0)


# --- client complete ---

def test_client_complete_with_passing_quiz_counts_session(in_db):
    async def scenario(db):
        await make_certifications(db)
        client = await make_user(db)
        session = await make_session(db, client, type="ai", status="in_progress")
        result = await lifecycle.complete_session_by_client(
            db, session.id, client.id, quiz_answers=FOUR_CORRECT, rating=5, feedback="Helpful"
        )
        return result, await _counters(db, client.id)

    result, counters = in_db(scenario)
    assert result.session.status == "completed"
    assert result.session.client_rating == 5
    assert result.quiz_result.score == 80
    assert result.counted_for_certification is True
    assert counters == (1, 1)


def test_failing_quiz_counts_only_the_quiz(in_db):
    async def scenario(db):
        client = await make_user(db)
        session = await make_session(db, client, type="ai", status="in_progress")
        result = await lifecycle.complete_session_by_client(db, session.id, client.id, quiz_answers=TWO_CORRECT)
        return result, await _counters(db, client.id)

    result, counters = in_db(scenario)
    assert result.quiz_result.score == 40
    assert result.counted_for_certification is False
    assert counters == (0, 1)


def test_client_complete_twice_is_rejected_and_counts_once(in_db):
    async def scenario(db):
        client = await make_user(db)
        session = await make_session(db, client, type="ai", status="in_progress")
        await lifecycle.complete_session_by_client(db, session.id, client.id, quiz_answers=ALL_CORRECT)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.complete_session_by_client(db, session.id, client.id, quiz_answers=ALL_CORRECT)
        quizzes = (await db.execute(select(QuizResult).where(QuizResult.session_id == session.id))).scalars().all()
        return len(quizzes), await _counters(db, client.id)

    assert in_db(scenario) == (1, (1, 1))


def test_client_can_complete_without_doctor_start(in_db):
    async def scenario(db):
        client = await make_user(db)
        session = await make_session(db, client, status="pending_approval")
        return await lifecycle.complete_session_by_client(db, session.id, client.id)

    result = in_db(scenario)
    assert result.session.status == "completed"
    assert result.counted_for_certification is False


def test_cancelled_session_cannot_be_completed(in_db):
    async def scenario(db):
        client = await make_user(db)
        session = await make_session(db, client, status="cancelled")
        await lifecycle.complete_session_by_client(db, session.id, client.id, quiz_answers=ALL_CORRECT)

    with pytest.raises(InvalidTransitionError):
        in_db(scenario)


def test_invalid_quiz_leaves_session_untouched(in_db):
    async def scenario(db):
        client = await make_user(db)
        session = await make_session(db, client, type="ai", status="in_progress")
        # 롤백 후에는 ORM 객체가 만료되므로 id 를 먼저 잡아둔다
        session_id, client_id = session.id, client.id
        with pytest.raises(ValidationError):
            await lifecycle.complete_session_by_client(db, session_id, client_id, quiz_answers=[1, 2])
        return (await lifecycle.get_session(db, session_id)).status, await _counters(db, client_id)

    assert in_db(scenario) == ("in_progress", (0, 0))


def test_invalid_rating_is_rejected(in_db):
    async def scenario(db):
        client = await make_user(db)
        session = await make_session(db, client, type="ai", status="in_progress")
        await lifecycle.complete_session_by_client(db, session.id, client.id, rating=6)

    with pytest.raises(ValidationError):
        in_db(scenario)


def test_second_passing_session_earns_certification(in_db):
    async def scenario(db):
        await make_certifications(db)
        client = await make_user(db)
        first = await make_session(db, client, type="ai", status="in_progress")
        second = await make_session(db, client, type="ai", status="in_progress")
        r1 = await lifecycle.complete_session_by_client(db, first.id, client.id, quiz_answers=FOUR_CORRECT)
        r2 = await lifecycle.complete_session_by_client(db, second.id, client.id, quiz_answers=ALL_CORRECT)
        rows = (
            await db.execute(
                select(UserCertification)
                .where(UserCertification.user_id == client.id)
                .order_by(UserCertification.certification_id)
            )
        ).scalars().all()
        return r1, r2, rows

    r1, r2, rows = in_db(scenario)
    assert r1.earned_certification_ids == []
    assert len(r2.earned_certification_ids) == 1
    anxiety = rows[0]
    assert anxiety.status == "completed"
    assert anxiety.progress_percentage == 100
    assert anxiety.earned_at is not None
    assert [r.status for r in rows[1:]] == ["in_progress", "in_progress"]


def test_recompute_failure_does_not_undo_completion(in_db, monkeypatch):
    from abby.services import certification as cert_service

    async def boom(db, user_id):
        raise RuntimeError("deadlock")

    monkeypatch.setattr(cert_service, "load_counters", boom)

    async def scenario(db):
        client = await make_user(db)
        session = await make_session(db, client, type="ai", status="in_progress")
        session_id, client_id = session.id, client.id
        result = await lifecycle.complete_session_by_client(db, session_id, client_id, quiz_answers=ALL_CORRECT)
        return result, await _counters(db, client_id)

    result, counters = in_db(scenario)
    assert result.session.status == "completed"
    assert result.certification_warning
    assert counters == (1, 1)


def test_lost_status_race_raises_invalid_transition(in_db):
    async def scenario(db):
        client = await make_user(db)
        session = await make_session(db, client, type="ai", status="in_progress")
        # 다른 요청이 이미 completed 로 바꾼 상황
        await lifecycle._compare_and_set(db, session, "in_progress", status="completed")
        await db.commit()
        await lifecycle._compare_and_set(db, session, "in_progress", status="completed")

    with pytest.raises(InvalidTransitionError):
        in_db(scenario)


# --- quiz after doctor completion ---

def test_quiz_can_be_attached_once_after_doctor_completion(in_db):
    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db)
        session = await make_session(db, client, doctor=doctor, status="in_progress")
        await lifecycle.complete_session_by_doctor(db, session.id, doctor.id)
        result = await lifecycle.submit_quiz(db, session.id, client.id, ALL_CORRECT)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.submit_quiz(db, session.id, client.id, ALL_CORRECT)
        return result, await _counters(db, client.id)

    result, counters = in_db(scenario)
    assert result.quiz_result.score == 100
    assert counters == (1, 1)


def test_quiz_requires_completed_session(in_db):
    async def scenario(db):
        client = await make_user(db)
        session = await make_session(db, client, type="ai", status="in_progress")
        await lifecycle.submit_quiz(db, session.id, client.id, ALL_CORRECT)

    with pytest.raises(InvalidTransitionError):
        in_db(scenario)


# --- cancel / assign / meeting url ---

def test_cancel_from_pending_and_not_from_in_progress(in_db):
    async def scenario(db):
        client = await make_user(db)
        pending = await make_session(db, client, status="pending_approval")
        running = await make_session(db, client, type="ai", status="in_progress")
        cancelled = await lifecycle.cancel_session(db, pending.id, client_id=client.id)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.cancel_session(db, running.id, client_id=client.id)
        return cancelled.status

    assert in_db(scenario) == "cancelled"


def test_assign_doctor_schedules_pending_session(in_db):
    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db)
        pending = await make_session(db, client, status="pending_approval")
        return await lifecycle.assign_doctor(db, pending.id, doctor.id), doctor.id

    session, doctor_id = in_db(scenario)
    assert session.status == "scheduled"
    assert session.doctor_id == doctor_id


def test_assign_requires_an_approved_doctor(in_db):
    async def scenario(db):
        client = await make_user(db)
        not_doctor = await make_user(db)
        pending = await make_session(db, client, status="pending_approval")
        await lifecycle.assign_doctor(db, pending.id, not_doctor.id)

    with pytest.raises(NotFoundError):
        in_db(scenario)


def test_meeting_url_rules(in_db):
    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db)
        session = await make_session(db, client, doctor=doctor)
        with pytest.raises(ValidationError):
            await lifecycle.update_meeting_url(db, session.id, doctor.id, "  ")
        return await lifecycle.update_meeting_url(db, session.id, doctor.id, "https://meet.example.com/abc")

    assert in_db(scenario).meeting_url == "https://meet.example.com/abc"


def test_list_sessions_filters_by_date(in_db):
    day = datetime(2026, 11, 5, 10, 0, tzinfo=timezone.utc)

    async def scenario(db):
        client = await make_user(db)
        doctor = await make_doctor(db)
        await make_session(db, client, doctor=doctor, scheduled_at=day)
        await make_session(db, client, doctor=doctor, scheduled_at=day + timedelta(days=1))
        on_day = await lifecycle.list_sessions(db, doctor_id=doctor.id, on_date=day.date())
        everything = await lifecycle.list_sessions(db, doctor_id=doctor.id)
        return len(on_day), len(everything)

    assert in_db(scenario) == (1, 2)
