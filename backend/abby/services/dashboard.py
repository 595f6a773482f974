# backend/abby/services/dashboard.py
"""
역할별 대시보드 집계 (읽기 전용).

Nothing here writes. Relations are eager-loaded so that sessions without a
doctor or users without a profile serialize as nulls instead of failing.
"""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from abby.models import (
    ClientProfile, DoctorProfile, Payment, QuizResult, Session, SessionNote,
    User, UserCertification, utcnow,
)

RECENT_LIMIT = 5


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def week_start(now: datetime) -> datetime:
    """Sunday 00:00 UTC of the week containing *now*."""
    day, _ = day_bounds(now)
    return day - timedelta(days=(day.weekday() + 1) % 7)


async def _count(db: AsyncSession, stmt) -> int:
    return int((await db.execute(stmt)).scalar_one() or 0)


def _sessions_with_people():
    return select(Session).options(
        selectinload(Session.client),
        selectinload(Session.doctor),
        selectinload(Session.quiz_result),
    )


# ─── Client ──────────────────────────────────────────────────────────────────

async def client_dashboard(db: AsyncSession, user_id: int, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()

    profile = (
        await db.execute(
            select(ClientProfile).where(ClientProfile.user_id == user_id)
        )
    ).scalar_one_or_none()

    recent_sessions = (
        await db.execute(
            _sessions_with_people()
            .where(Session.client_id == user_id)
            .order_by(Session.created_at.desc(), Session.id.desc())
            .limit(RECENT_LIMIT)
        )
    ).scalars().all()

    certifications = (
        await db.execute(
            select(UserCertification)
            .where(UserCertification.user_id == user_id)
            .options(selectinload(UserCertification.certification))
            .order_by(UserCertification.certification_id)
        )
    ).scalars().all()

    next_session = (
        await db.execute(
            _sessions_with_people()
            .where(
                Session.client_id == user_id,
                Session.status == "scheduled",
                Session.scheduled_at >= now,
            )
            .order_by(Session.scheduled_at.asc())
            .limit(1)
        )
    ).scalar_one_or_none()

    completed_sessions = await _count(
        db,
        select(func.count(Session.id)).where(Session.client_id == user_id, Session.status == "completed"),
    )
    completed_quizzes = await _count(
        db, select(func.count(QuizResult.id)).where(QuizResult.user_id == user_id)
    )

    return {
        "profile": profile,
        "recent_sessions": list(recent_sessions),
        "certifications": list(certifications),
        "next_session": next_session,
        "stats": {
            "completed_sessions": completed_sessions,
            "completed_quizzes": completed_quizzes,
            "certifications_earned": sum(1 for c in certifications if c.status in ("completed", "approved")),
            "progress_level": completed_sessions // 2 + 1,
        },
    }


async def client_progress(db: AsyncSession, user_id: int) -> dict:
    sessions = (
        await db.execute(
            select(Session)
            .where(Session.client_id == user_id)
            .options(selectinload(Session.quiz_result))
            .order_by(Session.created_at.asc(), Session.id.asc())
        )
    ).scalars().all()
    quizzes = (
        await db.execute(
            select(QuizResult)
            .where(QuizResult.user_id == user_id)
            .order_by(QuizResult.created_at.asc(), QuizResult.id.asc())
        )
    ).scalars().all()

    average = sum(q.score for q in quizzes) / len(quizzes) if quizzes else 0.0

    return {
        "total_sessions": len(sessions),
        "completed_sessions": sum(1 for s in sessions if s.status == "completed"),
        "ai_sessions": sum(1 for s in sessions if s.type == "ai"),
        "human_sessions": sum(1 for s in sessions if s.type == "human"),
        "average_quiz_score": round(average, 2),
        "session_history": [
            {
                "session_id": s.id,
                "date": s.scheduled_at,
                "type": s.type,
                "status": s.status,
                "score": s.quiz_result.score if s.quiz_result else None,
            }
            for s in sessions
        ],
        "quiz_trend": [{"date": q.created_at, "score": q.score} for q in quizzes],
    }


# ─── Doctor ──────────────────────────────────────────────────────────────────

async def doctor_dashboard(db: AsyncSession, doctor_id: int, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    today, tomorrow = day_bounds(now)

    profile = (
        await db.execute(
            select(DoctorProfile).where(DoctorProfile.user_id == doctor_id)
        )
    ).scalar_one_or_none()

    today_sessions = (
        await db.execute(
            _sessions_with_people()
            .where(
                Session.doctor_id == doctor_id,
                Session.scheduled_at >= today,
                Session.scheduled_at < tomorrow,
            )
            .order_by(Session.scheduled_at.asc())
        )
    ).scalars().all()

    pending_requests = (
        await db.execute(
            _sessions_with_people()
            .where(Session.doctor_id == doctor_id, Session.status == "scheduled")
            .order_by(Session.created_at.desc(), Session.id.desc())
            .limit(RECENT_LIMIT)
        )
    ).scalars().all()

    recent_notes = (
        await db.execute(
            select(SessionNote)
            .where(SessionNote.doctor_id == doctor_id)
            .options(selectinload(SessionNote.session).selectinload(Session.client))
            .order_by(SessionNote.created_at.desc(), SessionNote.id.desc())
            .limit(RECENT_LIMIT)
        )
    ).scalars().all()

    total_sessions = await _count(
        db,
        select(func.count(Session.id)).where(Session.doctor_id == doctor_id, Session.status == "completed"),
    )
    week_sessions = await _count(
        db,
        select(func.count(Session.id)).where(
            Session.doctor_id == doctor_id, Session.scheduled_at >= week_start(now)
        ),
    )

    return {
        "profile": profile,
        "today_sessions": list(today_sessions),
        "pending_requests": list(pending_requests),
        "recent_notes": list(recent_notes),
        "stats": {
            "total_sessions": total_sessions,
            "week_sessions": week_sessions,
            "today_sessions_count": len(today_sessions),
            "pending_requests_count": len(pending_requests),
        },
    }


# ─── Admin ───────────────────────────────────────────────────────────────────

async def admin_dashboard(db: AsyncSession) -> dict:
    total_clients = await _count(db, select(func.count(User.id)).where(User.role == "client"))
    total_doctors = await _count(db, select(func.count(User.id)).where(User.role == "doctor"))

    by_status = dict(
        (await db.execute(select(Session.status, func.count(Session.id)).group_by(Session.status))).all()
    )
    by_type = dict(
        (await db.execute(select(Session.type, func.count(Session.id)).group_by(Session.type))).all()
    )

    pending_payments = await _count(
        db, select(func.count(Payment.id)).where(Payment.status == "pending")
    )
    revenue = (
        await db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.status == "completed", Payment.is_verified.is_(True)
            )
        )
    ).scalar_one()

    pending_approvals = await _count(
        db,
        select(func.count(UserCertification.id)).where(
            UserCertification.status == "completed", UserCertification.is_approved.is_(False)
        ),
    )
    certifications_issued = await _count(
        db,
        select(func.count(UserCertification.id)).where(
            UserCertification.status == "approved", UserCertification.is_approved.is_(True)
        ),
    )

    recent_users = (
        await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()).limit(RECENT_LIMIT))
    ).scalars().all()
    recent_sessions = (
        await db.execute(
            _sessions_with_people().order_by(Session.created_at.desc(), Session.id.desc()).limit(RECENT_LIMIT)
        )
    ).scalars().all()
    pending_payments_list = (
        await db.execute(
            select(Payment)
            .where(Payment.status == "pending")
            .options(selectinload(Payment.user))
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .limit(RECENT_LIMIT)
        )
    ).scalars().all()

    return {
        "stats": {
            "total_clients": total_clients,
            "total_doctors": total_doctors,
            "active_sessions": by_status.get("in_progress", 0),
            "completed_sessions": by_status.get("completed", 0),
            "sessions_by_status": by_status,
            "sessions_by_type": by_type,
            "pending_payments": pending_payments,
            "revenue": Decimal(str(revenue)),
            "pending_approvals": pending_approvals,
            "certifications_issued": certifications_issued,
        },
        "recent_users": list(recent_users),
        "recent_sessions": list(recent_sessions),
        "pending_payments_list": list(pending_payments_list),
    }
