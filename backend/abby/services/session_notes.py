# backend/abby/services/session_notes.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from abby.errors import NotFoundError, ValidationError
from abby.models import Session, SessionNote

NOTE_FIELDS = ("title", "content", "tags", "diagnosis", "treatment_plan", "next_steps")


def _note_query():
    return (
        select(SessionNote)
        .options(selectinload(SessionNote.session).selectinload(Session.client))
        .execution_options(populate_existing=True)
    )


async def get_note(db: AsyncSession, note_id: int, doctor_id: int) -> SessionNote:
    note = (
        await db.execute(_note_query().where(SessionNote.id == note_id, SessionNote.doctor_id == doctor_id))
    ).scalar_one_or_none()
    if note is None:
        raise NotFoundError("Session note not found")
    return note


async def list_notes(
    db: AsyncSession,
    doctor_id: int,
    client_id: Optional[int] = None,
    search: Optional[str] = None,
) -> list[SessionNote]:
    q = _note_query().where(SessionNote.doctor_id == doctor_id)
    if client_id is not None:
        q = q.join(Session, Session.id == SessionNote.session_id).where(Session.client_id == client_id)
    if search:
        pattern = f"%{search.lower()}%"
        q = q.where(or_(SessionNote.title.ilike(pattern), SessionNote.content.ilike(pattern)))
    q = q.order_by(SessionNote.created_at.desc(), SessionNote.id.desc())
    return list((await db.execute(q)).scalars().all())


async def create_note(db: AsyncSession, doctor_id: int, session_id: Optional[int], **fields) -> SessionNote:
    """상담사 본인 세션에만 노트를 남길 수 있다."""
    if not session_id or not fields.get("title") or not fields.get("content"):
        raise ValidationError("Session ID, title, and content are required")

    owned = (
        await db.execute(select(Session.id).where(Session.id == session_id, Session.doctor_id == doctor_id))
    ).scalar_one_or_none()
    if owned is None:
        raise NotFoundError("Session not found")

    note = SessionNote(
        session_id=session_id,
        doctor_id=doctor_id,
        title=fields["title"],
        content=fields["content"],
        tags=fields.get("tags") or [],
        diagnosis=fields.get("diagnosis"),
        treatment_plan=fields.get("treatment_plan"),
        next_steps=fields.get("next_steps"),
    )
    db.add(note)
    await db.commit()
    return await get_note(db, note.id, doctor_id)


async def update_note(db: AsyncSession, note_id: int, doctor_id: int, changes: dict) -> SessionNote:
    """Partial update; keys outside the editable fields are ignored."""
    note = await get_note(db, note_id, doctor_id)
    for key in NOTE_FIELDS:
        if key not in changes:
            continue
        if key in ("title", "content") and not changes[key]:
            raise ValidationError(f"{key.capitalize()} cannot be empty")
        setattr(note, key, changes[key] if key != "tags" else (changes[key] or []))
    await db.commit()
    return await get_note(db, note_id, doctor_id)
