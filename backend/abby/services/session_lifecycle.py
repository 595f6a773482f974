# backend/abby/services/session_lifecycle.py
"""
세션 상태 전이.

    scheduled ──start──> in_progress ──complete──> completed
    pending_approval ──assign doctor──> scheduled
    scheduled | pending_approval ──cancel──> cancelled

The doctor endpoints follow the strict path (start only from `scheduled`,
complete only from `in_progress`). The client completion endpoint accepts any
non-terminal state, since AI and client-initiated sessions never pass through
a doctor start. Completing twice is always rejected so the client counters are
incremented once per session.

Status changes are written as compare-and-set updates
(`... WHERE id = :id AND status = :expected`); losing a race raises
InvalidTransitionError like any other illegal move.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from abby.config import get_settings
from abby.db import commit_or_conflict
from abby.errors import InvalidTransitionError, NotFoundError, ValidationError
from abby.models import ClientProfile, DoctorProfile, QuizResult, Session, User, utcnow
from abby.services.certification import RecomputeOutcome, recompute_progress_safely
from abby.services.quiz import grade_answers

logger = logging.getLogger(__name__)

# action -> (허용되는 현재 상태, 다음 상태)
SESSION_TRANSITIONS: dict[str, tuple[frozenset[str], str]] = {
    "start": (frozenset({"scheduled"}), "in_progress"),
    "client_complete": (frozenset({"scheduled", "pending_approval", "in_progress"}), "completed"),
    "doctor_complete": (frozenset({"in_progress"}), "completed"),
    "cancel": (frozenset({"scheduled", "pending_approval"}), "cancelled"),
    "assign_doctor": (frozenset({"scheduled", "pending_approval"}), "scheduled"),
}


def check_transition(action: str, current: str) -> str:
    """Return the target status of *action* from *current* or raise."""
    allowed, target = SESSION_TRANSITIONS[action]
    if current not in allowed:
        raise InvalidTransitionError(current=current, target=target)
    return target


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class CompletionResult:
    session: Session
    quiz_result: Optional[QuizResult] = None
    counted_for_certification: bool = False
    certification_warning: Optional[str] = None
    earned_certification_ids: list[int] = field(default_factory=list)


# ─── Loading ─────────────────────────────────────────────────────────────────

def _session_query():
    return (
        select(Session)
        .options(
            selectinload(Session.client),
            selectinload(Session.doctor),
            selectinload(Session.quiz_result),
        )
        .execution_options(populate_existing=True)
    )


async def get_session(
    db: AsyncSession,
    session_id: int,
    *,
    client_id: Optional[int] = None,
    doctor_id: Optional[int] = None,
) -> Session:
    """Load a session with its relations; scoping ids hide other users' sessions."""
    q = _session_query().where(Session.id == session_id)
    if client_id is not None:
        q = q.where(Session.client_id == client_id)
    if doctor_id is not None:
        q = q.where(Session.doctor_id == doctor_id)
    session = (await db.execute(q)).scalar_one_or_none()
    if session is None:
        raise NotFoundError("Session not found")
    return session


async def list_sessions(
    db: AsyncSession,
    *,
    client_id: Optional[int] = None,
    doctor_id: Optional[int] = None,
    status: Optional[str] = None,
    session_type: Optional[str] = None,
    on_date: Optional[date] = None,
) -> list[Session]:
    q = _session_query()
    if client_id is not None:
        q = q.where(Session.client_id == client_id)
    if doctor_id is not None:
        q = q.where(Session.doctor_id == doctor_id)
    if status:
        q = q.where(Session.status == status)
    if session_type:
        q = q.where(Session.type == session_type)
    if on_date:
        day_start = datetime.combine(on_date, time.min, tzinfo=timezone.utc)
        q = q.where(Session.scheduled_at >= day_start, Session.scheduled_at < day_start + timedelta(days=1))
    q = q.order_by(Session.scheduled_at.desc(), Session.id.desc())
    return list((await db.execute(q)).scalars().all())


async def _get_approved_doctor(db: AsyncSession, doctor_id: int) -> User:
    q = (
        select(User)
        .join(DoctorProfile, DoctorProfile.user_id == User.id)
        .where(
            User.id == doctor_id,
            User.role == "doctor",
            User.is_active.is_(True),
            DoctorProfile.is_approved.is_(True),
        )
    )
    doctor = (await db.execute(q)).scalar_one_or_none()
    if doctor is None:
        raise NotFoundError("Doctor not found")
    return doctor


async def _compare_and_set(db: AsyncSession, session: Session, expected: str, **values) -> None:
    res = await db.execute(
        update(Session)
        .where(Session.id == session.id, Session.status == expected)
        .values(updated_at=utcnow(), **values)
    )
    if res.rowcount != 1:
        await db.rollback()
        # 다른 요청이 먼저 상태를 바꿈
        raise InvalidTransitionError(current=expected, target=values.get("status", expected))


# ─── Booking ─────────────────────────────────────────────────────────────────

async def book_human_session(
    db: AsyncSession,
    client_id: int,
    *,
    preferred_date: Optional[date],
    preferred_time: Optional[time],
    reason: Optional[str],
    doctor_id: Optional[int] = None,
) -> Session:
    """
    상담사 세션 요청. 상담사가 지정되지 않으면 관리자 배정 전까지 pending_approval.
    """
    if not preferred_date or not preferred_time or not (reason and reason.strip()):
        raise ValidationError("Preferred date, time, and reason are required")

    if doctor_id is not None:
        await _get_approved_doctor(db, doctor_id)

    session = Session(
        client_id=client_id,
        doctor_id=doctor_id,
        type="human",
        status="scheduled" if doctor_id is not None else "pending_approval",
        scheduled_at=datetime.combine(preferred_date, preferred_time, tzinfo=timezone.utc),
        topic=reason.strip(),
    )
    db.add(session)
    await db.commit()
    logger.info("client %s booked human session %s (%s)", client_id, session.id, session.status)
    return await get_session(db, session.id)


async def start_ai_session(
    db: AsyncSession,
    client_id: int,
    *,
    topic: Optional[str] = None,
    scheduled_at: Optional[datetime] = None,
) -> Session:
    """Schedule an AI session for later, or start it right away."""
    settings = get_settings()
    now = utcnow()
    later = scheduled_at is not None and as_utc(scheduled_at) > now

    session = Session(
        client_id=client_id,
        type="ai",
        status="scheduled" if later else "in_progress",
        scheduled_at=as_utc(scheduled_at) if later else now,
        started_at=None if later else now,
        topic=(topic or "").strip() or settings.therapy.default_ai_topic,
        ai_model=settings.therapy.ai_model,
    )
    db.add(session)
    await db.commit()
    return await get_session(db, session.id)


# ─── Transitions ─────────────────────────────────────────────────────────────

async def start_session(
    db: AsyncSession,
    session_id: int,
    *,
    doctor_id: Optional[int] = None,
    client_id: Optional[int] = None,
) -> Session:
    """
    scheduled -> in_progress.

    Doctors start their human sessions; clients may only start their own
    scheduled AI sessions.
    """
    session = await get_session(db, session_id, doctor_id=doctor_id, client_id=client_id)
    if client_id is not None and session.type != "ai":
        raise ValidationError("Human sessions are started by the assigned doctor")

    target = check_transition("start", session.status)
    await _compare_and_set(db, session, session.status, status=target, started_at=utcnow())
    await db.commit()
    logger.info("session %s started", session_id)
    return await get_session(db, session_id)


async def _record_quiz(
    db: AsyncSession,
    session: Session,
    answers: Sequence[int],
    passing_score: int,
) -> tuple[QuizResult, bool]:
    """QuizResult 생성 + 클라이언트 카운터 증가. 커밋은 호출자가 한다."""
    grade = grade_answers(answers)
    quiz = QuizResult(
        session_id=session.id,
        user_id=session.client_id,
        questions=grade.questions,
        answers=grade.answers,
        correct=grade.correct,
        score=grade.score,
        total_questions=grade.total_questions,
    )
    db.add(quiz)

    counted = grade.passed(passing_score)
    profile = await db.get(ClientProfile, session.client_id)
    if profile is None:
        db.add(ClientProfile(
            user_id=session.client_id,
            total_sessions_completed=1 if counted else 0,
            total_quizzes_completed=1,
        ))
    else:
        await db.execute(
            update(ClientProfile)
            .where(ClientProfile.user_id == session.client_id)
            .values(
                total_quizzes_completed=ClientProfile.total_quizzes_completed + 1,
                total_sessions_completed=ClientProfile.total_sessions_completed + (1 if counted else 0),
            )
        )
    return quiz, counted


async def _finish_completion(db: AsyncSession, session_id: int, result: CompletionResult) -> CompletionResult:
    outcome, warning = await recompute_progress_safely(db, result.session.client_id)
    result.certification_warning = warning
    if isinstance(outcome, RecomputeOutcome):
        result.earned_certification_ids = list(outcome.earned)
    result.session = await get_session(db, session_id)
    result.quiz_result = result.session.quiz_result
    return result


async def complete_session_by_client(
    db: AsyncSession,
    session_id: int,
    client_id: int,
    *,
    quiz_answers: Optional[Sequence[int]] = None,
    rating: Optional[int] = None,
    feedback: Optional[str] = None,
    passing_score: Optional[int] = None,
) -> CompletionResult:
    if passing_score is None:
        passing_score = get_settings().therapy.passing_score
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")

    session = await get_session(db, session_id, client_id=client_id)
    target = check_transition("client_complete", session.status)

    await _compare_and_set(
        db, session, session.status,
        status=target, ended_at=utcnow(), client_rating=rating, client_feedback=feedback,
    )

    counted = False
    if quiz_answers:
        try:
            _, counted = await _record_quiz(db, session, quiz_answers, passing_score)
        except ValidationError:
            await db.rollback()
            raise
    await commit_or_conflict(db, "Quiz already submitted for this session")
    logger.info("session %s completed by client %s (counted=%s)", session_id, client_id, counted)

    return await _finish_completion(
        db, session_id, CompletionResult(session=session, counted_for_certification=counted)
    )


async def complete_session_by_doctor(
    db: AsyncSession,
    session_id: int,
    doctor_id: int,
    *,
    notes: Optional[str] = None,
    doctor_rating: Optional[int] = None,
    summary: Optional[str] = None,
) -> CompletionResult:
    if doctor_rating is not None and not 1 <= doctor_rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")

    session = await get_session(db, session_id, doctor_id=doctor_id)
    target = check_transition("doctor_complete", session.status)

    await _compare_and_set(
        db, session, session.status,
        status=target, ended_at=utcnow(), notes=notes, doctor_rating=doctor_rating, summary=summary,
    )
    await db.commit()
    logger.info("session %s completed by doctor %s", session_id, doctor_id)

    return await _finish_completion(db, session_id, CompletionResult(session=session))


async def submit_quiz(
    db: AsyncSession,
    session_id: int,
    client_id: int,
    quiz_answers: Sequence[int],
    passing_score: Optional[int] = None,
) -> CompletionResult:
    """
    Attach the post-session quiz to a session that was completed without one
    (e.g. closed by the doctor). Only one quiz per session.
    """
    if passing_score is None:
        passing_score = get_settings().therapy.passing_score

    session = await get_session(db, session_id, client_id=client_id)
    if session.status != "completed":
        raise InvalidTransitionError("Quiz can only be submitted for a completed session")
    if session.quiz_result is not None:
        raise InvalidTransitionError("Quiz already submitted for this session")

    _, counted = await _record_quiz(db, session, quiz_answers, passing_score)
    await commit_or_conflict(db, "Quiz already submitted for this session")

    return await _finish_completion(
        db, session_id, CompletionResult(session=session, counted_for_certification=counted)
    )


async def cancel_session(
    db: AsyncSession,
    session_id: int,
    *,
    client_id: Optional[int] = None,
) -> Session:
    """Client cancels own session; admin passes no client_id."""
    session = await get_session(db, session_id, client_id=client_id)
    target = check_transition("cancel", session.status)
    await _compare_and_set(db, session, session.status, status=target)
    await db.commit()
    logger.info("session %s cancelled", session_id)
    return await get_session(db, session_id)


async def assign_doctor(db: AsyncSession, session_id: int, doctor_id: int) -> Session:
    """관리자 배정: pending_approval (또는 재배정 시 scheduled) -> scheduled."""
    session = await get_session(db, session_id)
    if session.type != "human":
        raise ValidationError("Only human sessions can be assigned to a doctor")
    target = check_transition("assign_doctor", session.status)
    await _get_approved_doctor(db, doctor_id)

    await _compare_and_set(db, session, session.status, status=target, doctor_id=doctor_id)
    await db.commit()
    logger.info("session %s assigned to doctor %s", session_id, doctor_id)
    return await get_session(db, session_id)


async def update_meeting_url(db: AsyncSession, session_id: int, doctor_id: int, meeting_url: Optional[str]) -> Session:
    session = await get_session(db, session_id, doctor_id=doctor_id)
    if session.type != "human":
        raise ValidationError("Meeting URL is only used for human sessions")
    if not meeting_url or not meeting_url.strip():
        raise ValidationError("Meeting URL is required")
    if session.status in ("completed", "cancelled"):
        raise InvalidTransitionError(f"Session is already {session.status}")

    session.meeting_url = meeting_url.strip()
    await db.commit()
    return await get_session(db, session_id)
