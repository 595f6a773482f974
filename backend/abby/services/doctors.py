# backend/abby/services/doctors.py
"""
상담사 관리: 관리자 생성/승인, 클라이언트용 목록, 주간 스케줄.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from abby.db import commit_or_conflict
from abby.errors import ConflictError, NotFoundError, ValidationError
from abby.models import DoctorProfile, Session, User, utcnow
from abby.services.auth_service import hash_password
from abby.services.dashboard import week_start

logger = logging.getLogger(__name__)

DEFAULT_WORKING_HOURS = {
    "monday": {"start": "09:00", "end": "17:00", "is_available": True},
    "tuesday": {"start": "09:00", "end": "17:00", "is_available": True},
    "wednesday": {"start": "09:00", "end": "17:00", "is_available": True},
    "thursday": {"start": "09:00", "end": "17:00", "is_available": True},
    "friday": {"start": "09:00", "end": "17:00", "is_available": True},
    "saturday": {"start": "09:00", "end": "13:00", "is_available": False},
    "sunday": {"start": "09:00", "end": "13:00", "is_available": False},
}


@dataclass
class CreatedDoctor:
    user: User
    temp_password: str


def _doctor_query():
    return (
        select(User)
        .where(User.role == "doctor")
        .options(selectinload(User.doctor_profile))
        .execution_options(populate_existing=True)
    )


async def get_doctor(db: AsyncSession, doctor_id: int) -> User:
    doctor = (await db.execute(_doctor_query().where(User.id == doctor_id))).scalar_one_or_none()
    if doctor is None or doctor.doctor_profile is None:
        raise NotFoundError("Doctor not found")
    return doctor


async def create_doctor(
    db: AsyncSession,
    *,
    email: str,
    first_name: str,
    last_name: str,
    license_number: str,
    specializations: Optional[list] = None,
    education: Optional[list] = None,
    experience: int = 0,
    bio: Optional[str] = None,
) -> CreatedDoctor:
    """
    관리자가 상담사 계정을 만든다. 승인 전까지 비활성.
    임시 비밀번호는 응답으로 한 번만 돌려준다.
    """
    if not email or not first_name or not last_name or not license_number:
        raise ValidationError("Email, first name, last name, and license number are required")

    email = email.strip().lower()
    if (await db.execute(select(User.id).where(User.email == email))).scalar_one_or_none():
        raise ConflictError("User with this email already exists")
    if (
        await db.execute(select(DoctorProfile.user_id).where(DoctorProfile.license_number == license_number))
    ).scalar_one_or_none():
        raise ConflictError("License number already exists")

    temp_password = secrets.token_hex(12)
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        role="doctor",
        password_hash=hash_password(temp_password),
        is_active=False,
    )
    user.doctor_profile = DoctorProfile(
        license_number=license_number,
        specializations=specializations or [],
        education=education or [],
        experience=experience or 0,
        bio=bio,
        working_hours=DEFAULT_WORKING_HOURS,
        is_approved=False,
    )
    db.add(user)
    # 동시 생성 경합은 유니크 제약이 잡는다
    await commit_or_conflict(db, "User with this email or license number already exists")
    logger.info("doctor %s created (pending approval)", user.id)
    return CreatedDoctor(user=await get_doctor(db, user.id), temp_password=temp_password)


async def set_doctor_approval(db: AsyncSession, doctor_id: int, approved: bool) -> User:
    doctor = await get_doctor(db, doctor_id)
    profile = doctor.doctor_profile
    profile.is_approved = approved
    profile.approved_at = utcnow() if approved else None
    if approved:
        doctor.is_active = True
    await db.commit()
    logger.info("doctor %s %s", doctor_id, "approved" if approved else "rejected")
    return await get_doctor(db, doctor_id)


async def list_doctors_for_admin(
    db: AsyncSession,
    approved: Optional[bool] = None,
    search: Optional[str] = None,
) -> list[tuple[User, int]]:
    """(doctor, completed session count) 목록."""
    q = _doctor_query().join(DoctorProfile, DoctorProfile.user_id == User.id)
    if approved is not None:
        q = q.where(DoctorProfile.is_approved.is_(approved))
    if search:
        pattern = f"%{search.lower()}%"
        q = q.where(or_(User.first_name.ilike(pattern), User.last_name.ilike(pattern), User.email.ilike(pattern)))
    doctors = (await db.execute(q.order_by(User.created_at.desc(), User.id.desc()))).scalars().all()

    counts = dict(
        (
            await db.execute(
                select(Session.doctor_id, func.count(Session.id))
                .where(Session.status == "completed", Session.doctor_id.is_not(None))
                .group_by(Session.doctor_id)
            )
        ).all()
    )
    return [(d, counts.get(d.id, 0)) for d in doctors]


async def list_available_doctors(db: AsyncSession) -> list[User]:
    """클라이언트 예약용: 활성 + 승인 + 프로필 완성(라이선스, 전문분야)."""
    q = (
        _doctor_query()
        .join(DoctorProfile, DoctorProfile.user_id == User.id)
        .where(User.is_active.is_(True), DoctorProfile.is_approved.is_(True))
        .order_by(User.last_name, User.first_name, User.id)
    )
    doctors = (await db.execute(q)).scalars().all()
    return [
        d for d in doctors
        if d.doctor_profile.license_number and d.doctor_profile.specializations
    ]


# ─── Schedule ────────────────────────────────────────────────────────────────

async def get_schedule(db: AsyncSession, doctor_id: int, week: Optional[date] = None) -> dict:
    doctor = await get_doctor(db, doctor_id)
    anchor = datetime.combine(week, time.min, tzinfo=timezone.utc) if week else utcnow()
    start = week_start(anchor)
    end = start + timedelta(days=7)

    sessions = (
        await db.execute(
            select(Session)
            .where(Session.doctor_id == doctor_id, Session.scheduled_at >= start, Session.scheduled_at < end)
            .options(selectinload(Session.client), selectinload(Session.doctor), selectinload(Session.quiz_result))
            .order_by(Session.scheduled_at.asc())
        )
    ).scalars().all()

    profile = doctor.doctor_profile
    return {
        "working_hours": profile.working_hours or {},
        "session_duration": profile.session_duration,
        "break_between_sessions": profile.break_between_sessions,
        "sessions": list(sessions),
        "week_start": start,
        "week_end": end,
    }


async def update_schedule(
    db: AsyncSession,
    doctor_id: int,
    *,
    working_hours: Optional[dict] = None,
    session_duration: Optional[int] = None,
    break_between_sessions: Optional[int] = None,
) -> DoctorProfile:
    if session_duration is not None and session_duration <= 0:
        raise ValidationError("Session duration must be positive")
    if break_between_sessions is not None and break_between_sessions < 0:
        raise ValidationError("Break between sessions cannot be negative")

    doctor = await get_doctor(db, doctor_id)
    profile = doctor.doctor_profile
    if working_hours is not None:
        profile.working_hours = working_hours
    if session_duration is not None:
        profile.session_duration = session_duration
    if break_between_sessions is not None:
        profile.break_between_sessions = break_between_sessions
    await db.commit()
    return (await get_doctor(db, doctor_id)).doctor_profile
