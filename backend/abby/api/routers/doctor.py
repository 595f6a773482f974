from __future__ import annotations
from datetime import date
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from abby.db import get_db
from abby.models import User
from abby.schemas import (
    SessionOut, session_to_out, DoctorCompleteRequest, MeetingUrlRequest, CompletionOut, completion_to_out,
    DoctorDashboardOut, ScheduleOut, ScheduleUpdate, DoctorProfileOut,
    SessionNoteCreate, SessionNoteUpdate, SessionNoteOut,
)
from abby.services import dashboard, doctors, session_notes
from abby.services import session_lifecycle as lifecycle
from abby.services.auth_service import require_role
from abby.services.events import publish_completion

router = APIRouter(prefix="/doctor", tags=["doctor"])

doctor_user = require_role("doctor")


@router.get("/dashboard", response_model=DoctorDashboardOut)
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(doctor_user),
):
    data = await dashboard.doctor_dashboard(db, current_user.id)
    data["today_sessions"] = [session_to_out(s) for s in data["today_sessions"]]
    data["pending_requests"] = [session_to_out(s) for s in data["pending_requests"]]
    return DoctorDashboardOut.model_validate(data, from_attributes=True)


@router.get("/sessions", response_model=List[SessionOut])
async def get_sessions(
    status_filter: Optional[str] = Query(None, alias="status"),
    on_date: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(doctor_user),
):
    """본인에게 배정된 세션 (상태/날짜 필터)"""
    sessions = await lifecycle.list_sessions(
        db, doctor_id=current_user.id, status=status_filter, on_date=on_date
    )
    return [session_to_out(s) for s in sessions]


@router.post("/sessions/{session_id}/start", response_model=SessionOut)
async def start_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(doctor_user),
):
    return session_to_out(await lifecycle.start_session(db, session_id, doctor_id=current_user.id))


@router.put("/sessions/{session_id}/meeting-url", response_model=SessionOut)
async def update_meeting_url(
    session_id: int,
    req: MeetingUrlRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(doctor_user),
):
    session = await lifecycle.update_meeting_url(db, session_id, current_user.id, req.meeting_url)
    return session_to_out(session)


@router.post("/sessions/{session_id}/complete", response_model=CompletionOut)
async def complete_session(
    session_id: int,
    req: DoctorCompleteRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(doctor_user),
):
    """진행 중(in_progress)인 세션만 종료할 수 있다."""
    result = await lifecycle.complete_session_by_doctor(
        db,
        session_id,
        current_user.id,
        notes=req.notes,
        doctor_rating=req.doctor_rating,
        summary=req.summary,
    )
    await publish_completion(result)
    return completion_to_out(result, "Session completed successfully")


@router.get("/schedule", response_model=ScheduleOut)
async def get_schedule(
    week: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(doctor_user),
):
    data = await doctors.get_schedule(db, current_user.id, week)
    data["sessions"] = [session_to_out(s) for s in data["sessions"]]
    return data


@router.put("/schedule", response_model=DoctorProfileOut)
async def update_schedule(
    req: ScheduleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(doctor_user),
):
    return await doctors.update_schedule(
        db,
        current_user.id,
        working_hours=req.working_hours,
        session_duration=req.session_duration,
        break_between_sessions=req.break_between_sessions,
    )


# --- 세션 노트 ---
@router.get("/session-notes", response_model=List[SessionNoteOut])
async def get_session_notes(
    client_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(doctor_user),
):
    return await session_notes.list_notes(db, current_user.id, client_id=client_id, search=search)


@router.post("/session-notes", response_model=SessionNoteOut, status_code=status.HTTP_201_CREATED)
async def create_session_note(
    req: SessionNoteCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(doctor_user),
):
    fields = req.model_dump(exclude={"session_id"})
    return await session_notes.create_note(db, current_user.id, req.session_id, **fields)


@router.put("/session-notes/{note_id}", response_model=SessionNoteOut)
async def update_session_note(
    note_id: int,
    req: SessionNoteUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(doctor_user),
):
    # 보낸 필드만 수정
    return await session_notes.update_note(db, note_id, current_user.id, req.model_dump(exclude_unset=True))
