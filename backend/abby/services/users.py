# backend/abby/services/users.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from abby.errors import NotFoundError, ValidationError
from abby.models import User

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


async def list_users(
    db: AsyncSession,
    *,
    role: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[User], int]:
    """관리자 사용자 목록. (현재 페이지, 전체 개수)."""
    if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}")

    conditions = []
    if role:
        conditions.append(User.role == role)
    if status == "active":
        conditions.append(User.is_active.is_(True))
    elif status == "inactive":
        conditions.append(User.is_active.is_(False))
    if search:
        pattern = f"%{search.lower()}%"
        conditions.append(or_(User.first_name.ilike(pattern), User.last_name.ilike(pattern), User.email.ilike(pattern)))

    total = (await db.execute(select(func.count(User.id)).where(*conditions))).scalar_one()
    q = (
        select(User)
        .where(*conditions)
        .options(selectinload(User.client_profile), selectinload(User.doctor_profile))
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list((await db.execute(q)).scalars().all()), int(total)


async def set_user_active(db: AsyncSession, user_id: int, is_active: bool, admin_id: int) -> User:
    if user_id == admin_id and not is_active:
        raise ValidationError("Admins cannot deactivate their own account")
    user = await db.get(User, user_id, populate_existing=True)
    if user is None:
        raise NotFoundError("User not found")
    user.is_active = is_active
    await db.commit()
    logger.info("user %s %s by admin %s", user_id, "activated" if is_active else "deactivated", admin_id)
    return user
