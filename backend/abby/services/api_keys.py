# backend/abby/services/api_keys.py
"""
관리자 API 키. 평문 키는 생성 시 한 번만 반환되고 DB 에는 sha256 해시만 남는다.
"""
from __future__ import annotations

import hashlib
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from abby.config import get_settings
from abby.db import commit_or_conflict
from abby.errors import NotFoundError, ValidationError
from abby.models import ApiKey


def generate_raw_key() -> str:
    return get_settings().therapy.api_key_prefix + secrets.token_hex(32)


def hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


async def get_api_key(db: AsyncSession, key_id: int) -> ApiKey:
    key = await db.get(ApiKey, key_id, populate_existing=True)
    if key is None:
        raise NotFoundError("API key not found")
    return key


async def list_api_keys(db: AsyncSession) -> list[ApiKey]:
    q = select(ApiKey).order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
    return list((await db.execute(q)).scalars().all())


async def create_api_key(
    db: AsyncSession,
    admin_id: int,
    name: Optional[str],
    permissions: Optional[list] = None,
    expires_at: Optional[datetime] = None,
) -> tuple[ApiKey, str]:
    if not name or not name.strip():
        raise ValidationError("API key name is required")

    raw_key = generate_raw_key()
    key = ApiKey(
        name=name.strip(),
        key_hash=hash_key(raw_key),
        permissions=permissions or [],
        created_by=admin_id,
        expires_at=expires_at,
    )
    db.add(key)
    await commit_or_conflict(db, "API key collision, please retry")
    return key, raw_key


async def update_api_key(db: AsyncSession, key_id: int, changes: dict) -> ApiKey:
    key = await get_api_key(db, key_id)
    if "name" in changes:
        if not changes["name"] or not changes["name"].strip():
            raise ValidationError("API key name cannot be empty")
        key.name = changes["name"].strip()
    if "permissions" in changes:
        key.permissions = changes["permissions"] or []
    if "is_active" in changes and changes["is_active"] is not None:
        key.is_active = changes["is_active"]
    await db.commit()
    return await get_api_key(db, key_id)


async def delete_api_key(db: AsyncSession, key_id: int) -> None:
    key = await get_api_key(db, key_id)
    await db.delete(key)
    await db.commit()

