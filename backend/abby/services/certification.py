# backend/abby/services/certification.py
"""
인증(Certification) 진행률 엔진.

Progress toward every certification template is derived from the client's
aggregate counters (qualifying completed sessions, submitted quizzes):

    session_progress = min(100, 100 * sessions / required_sessions)
    quiz_progress    = min(100, 100 * quizzes / required_quizzes)
    overall          = min(100, (session_progress + quiz_progress) / 2)

A UserCertification row is created lazily on the first recomputation. Rows that
reached `completed` (or were approved / rejected afterwards) are never touched
again by recomputation, so earned_at is stamped exactly once.

All templates are recomputed inside one transaction; callers that must not
fail because of it use `recompute_progress_safely`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from abby.db import commit_or_conflict
from abby.errors import InvalidTransitionError, NotFoundError
from abby.models import Certification, ClientProfile, UserCertification, utcnow
from abby.services.quiz import round_half_up

logger = logging.getLogger(__name__)

# 재계산이 더 이상 건드리지 않는 상태
FINAL_STATUSES = frozenset({"completed", "approved", "rejected"})

DEFAULT_CERTIFICATIONS: list[dict] = [
    {
        "name": "Anxiety Management Basics",
        "description": (
            "Complete fundamental anxiety management techniques and demonstrate "
            "understanding through practical application."
        ),
        "requirements": ["Complete 2 therapy sessions", "Pass 2 quizzes with 80% score"],
        "required_sessions": 2,
        "required_quizzes": 2,
        "minimum_score": 80,
        "badge_image_url": "/certifications/anxiety-badge.png",
    },
    {
        "name": "Emotional Intelligence Explorer",
        "description": (
            "Develop emotional awareness and regulation skills through guided therapy sessions."
        ),
        "requirements": ["Complete 3 therapy sessions", "Pass 3 quizzes with 85% score"],
        "required_sessions": 3,
        "required_quizzes": 3,
        "minimum_score": 85,
        "badge_image_url": "/certifications/emotional-badge.png",
    },
    {
        "name": "Mindfulness Practitioner",
        "description": "Master mindfulness techniques and meditation practices for mental well-being.",
        "requirements": ["Complete 4 therapy sessions", "Pass 4 quizzes with 80% score"],
        "required_sessions": 4,
        "required_quizzes": 4,
        "minimum_score": 80,
        "badge_image_url": "/certifications/mindfulness-badge.png",
    },
]


# ─── Pure progress rules ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProgressCounters:
    sessions_completed: int
    quizzes_completed: int


def _requirement_progress(done: int, required: int) -> float:
    if required <= 0:
        return 100.0
    return min(100.0, 100.0 * done / required)


def overall_progress(counters: ProgressCounters, required_sessions: int, required_quizzes: int) -> float:
    session_progress = _requirement_progress(counters.sessions_completed, required_sessions)
    quiz_progress = _requirement_progress(counters.quizzes_completed, required_quizzes)
    return min(100.0, (session_progress + quiz_progress) / 2)


@dataclass(frozen=True)
class ProgressDecision:
    action: Literal["create", "complete", "update", "skip"]
    status: Optional[str] = None
    progress: Optional[int] = None
    earned_at: Optional[datetime] = None


def decide_progress(
    current_status: Optional[str],
    current_progress: int,
    overall: float,
    now: datetime,
) -> ProgressDecision:
    """
    Decide what recomputation does to one (user, certification) row.

    `current_status` is None when no row exists yet. Incomplete progress is
    capped at 99 so that 100 always means completed, and never decreases.
    """
    reached = overall >= 100
    rounded = min(99, round_half_up(overall))

    if current_status is None:
        if reached:
            return ProgressDecision("create", "completed", 100, now)
        return ProgressDecision("create", "in_progress", rounded)

    if current_status in FINAL_STATUSES:
        return ProgressDecision("skip")

    if reached:
        return ProgressDecision("complete", "completed", 100, now)

    # locked 로 만들어진 행은 첫 진행 시 in_progress 로 올라간다
    return ProgressDecision("update", "in_progress", max(current_progress, rounded))


# ─── Persistence ─────────────────────────────────────────────────────────────

@dataclass
class RecomputeOutcome:
    user_id: int
    counters: ProgressCounters
    created: list[int] = field(default_factory=list)
    updated: list[int] = field(default_factory=list)
    earned: list[int] = field(default_factory=list)   # 이번에 completed 가 된 certification_id


async def load_counters(db: AsyncSession, user_id: int) -> ProgressCounters:
    # 카운터는 UPDATE 문으로 증가시키므로 identity map 값을 믿지 않는다
    profile = await db.get(ClientProfile, user_id, populate_existing=True)
    if profile is None:
        return ProgressCounters(0, 0)
    return ProgressCounters(profile.total_sessions_completed, profile.total_quizzes_completed)


async def recompute_certification_progress(
    db: AsyncSession,
    user_id: int,
    now: Optional[datetime] = None,
) -> RecomputeOutcome:
    """Recompute every template for *user_id* and commit once (all or nothing)."""
    now = now or utcnow()
    try:
        counters = await load_counters(db, user_id)
        outcome = RecomputeOutcome(user_id=user_id, counters=counters)

        templates = (await db.execute(select(Certification).order_by(Certification.id))).scalars().all()
        existing_rows = (
            await db.execute(
                select(UserCertification)
                .where(UserCertification.user_id == user_id)
                .with_for_update()
            )
        ).scalars().all()
        existing = {row.certification_id: row for row in existing_rows}

        for cert in templates:
            row = existing.get(cert.id)
            overall = overall_progress(counters, cert.required_sessions, cert.required_quizzes)
            decision = decide_progress(
                row.status if row else None,
                row.progress_percentage if row else 0,
                overall,
                now,
            )

            if decision.action == "skip":
                continue
            if decision.action == "create":
                db.add(UserCertification(
                    user_id=user_id,
                    certification_id=cert.id,
                    status=decision.status,
                    progress_percentage=decision.progress,
                    earned_at=decision.earned_at,
                ))
                outcome.created.append(cert.id)
            elif decision.action == "complete":
                row.status = decision.status
                row.progress_percentage = decision.progress
                row.earned_at = decision.earned_at
                outcome.updated.append(cert.id)
            elif row.status != decision.status or row.progress_percentage != decision.progress:
                row.status = decision.status
                row.progress_percentage = decision.progress
                outcome.updated.append(cert.id)

            if decision.status == "completed":
                outcome.earned.append(cert.id)

        await commit_or_conflict(db, "Certification progress already exists for this user")
    except Exception:
        await db.rollback()
        raise

    if outcome.earned:
        logger.info("user %s earned certifications %s", user_id, outcome.earned)
    return outcome


async def recompute_progress_safely(
    db: AsyncSession, user_id: int
) -> tuple[Optional[RecomputeOutcome], Optional[str]]:
    """
    세션 완료 응답을 막지 않도록 재계산 실패를 경고 문자열로 돌려준다.
    """
    try:
        return await recompute_certification_progress(db, user_id), None
    except Exception:
        logger.exception("Certification progress update failed for user %s", user_id)
        return None, "Certification progress could not be updated; it will be recalculated on the next completed session."


# ─── Approval ────────────────────────────────────────────────────────────────

async def get_user_certification(db: AsyncSession, user_certification_id: int) -> UserCertification:
    q = (
        select(UserCertification)
        .where(UserCertification.id == user_certification_id)
        .options(
            selectinload(UserCertification.user),
            selectinload(UserCertification.certification),
        )
        .execution_options(populate_existing=True)
    )
    row = (await db.execute(q)).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Certification not found")
    return row


async def set_certification_approval(
    db: AsyncSession,
    user_certification_id: int,
    approved: bool,
    admin_id: int,
) -> UserCertification:
    """
    Approve or reject a completed certification.

    Repeating the same decision is a no-op that returns the stored state.
    """
    row = await get_user_certification(db, user_certification_id)

    if approved:
        if row.status == "approved" and row.is_approved:
            return row
        if row.status not in ("completed", "rejected"):
            raise InvalidTransitionError(current=row.status, target="approved")
        row.status = "approved"
        row.is_approved = True
        row.approved_by = admin_id
        row.approved_at = utcnow()
    else:
        if row.status == "rejected":
            return row
        if row.status not in ("completed", "approved"):
            raise InvalidTransitionError(current=row.status, target="rejected")
        row.status = "rejected"
        row.is_approved = False
        row.approved_by = None
        row.approved_at = None

    await db.commit()
    logger.info("certification %s %s by admin %s", row.id, row.status, admin_id)
    return await get_user_certification(db, user_certification_id)


# ─── Templates / listings ────────────────────────────────────────────────────

async def setup_default_certifications(db: AsyncSession) -> list[Certification]:
    """기본 템플릿 생성 (이름 기준으로 이미 있으면 건너뜀)."""
    existing_names = set((await db.execute(select(Certification.name))).scalars().all())
    created = []
    for data in DEFAULT_CERTIFICATIONS:
        if data["name"] in existing_names:
            continue
        cert = Certification(**data)
        db.add(cert)
        created.append(cert)
    await commit_or_conflict(db, "Certification template already exists")
    return created


async def list_certifications_for_user(db: AsyncSession, user_id: int) -> list[dict]:
    templates = (await db.execute(select(Certification).order_by(Certification.id))).scalars().all()
    rows = (
        await db.execute(select(UserCertification).where(UserCertification.user_id == user_id))
    ).scalars().all()
    by_cert = {r.certification_id: r for r in rows}

    merged = []
    for cert in templates:
        progress = by_cert.get(cert.id)
        merged.append({
            "certification": cert,
            "user_progress": progress,
            "status": progress.status if progress else "locked",
            "is_unlocked": bool(progress and progress.status != "locked"),
            "progress_percentage": progress.progress_percentage if progress else 0,
        })
    return merged


async def list_user_certifications(
    db: AsyncSession,
    status: Optional[str] = None,
    pending: bool = False,
) -> list[UserCertification]:
    q = select(UserCertification).options(
        selectinload(UserCertification.user),
        selectinload(UserCertification.certification),
    )
    if pending:
        q = q.where(UserCertification.status == "completed", UserCertification.is_approved.is_(False))
    elif status:
        q = q.where(UserCertification.status == status)
    q = q.order_by(UserCertification.earned_at.desc(), UserCertification.id.desc())
    return list((await db.execute(q)).scalars().all())
