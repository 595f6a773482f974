from __future__ import annotations
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from abby.db import get_db
from abby.models import User
from abby.schemas import (
    SessionOut, session_to_out, HumanSessionRequest, AISessionRequest, ClientCompleteRequest,
    QuizSubmitRequest, CompletionOut, completion_to_out, QuizQuestionOut, ClientDashboardOut, ClientProgressOut,
    DoctorOut, CertificationProgressOut, PaymentCreate, PaymentOut,
)
from abby.services import dashboard, doctors, payments
from abby.services import session_lifecycle as lifecycle
from abby.services.auth_service import require_role
from abby.services.certification import list_certifications_for_user
from abby.services.events import publish_completion
from abby.services.quiz import DEFAULT_QUESTIONS

router = APIRouter(prefix="/client", tags=["client"])

client_user = require_role("client")


@router.get("/dashboard", response_model=ClientDashboardOut)
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    data = await dashboard.client_dashboard(db, current_user.id)
    data["recent_sessions"] = [session_to_out(s) for s in data["recent_sessions"]]
    if data["next_session"] is not None:
        data["next_session"] = session_to_out(data["next_session"])
    return ClientDashboardOut.model_validate(data, from_attributes=True)


@router.get("/sessions", response_model=List[SessionOut])
async def get_sessions(
    status_filter: Optional[str] = Query(None, alias="status"),
    session_type: Optional[str] = Query(None, alias="type"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    sessions = await lifecycle.list_sessions(
        db, client_id=current_user.id, status=status_filter, session_type=session_type
    )
    return [session_to_out(s) for s in sessions]


@router.get("/sessions/{session_id}", response_model=SessionOut)
async def get_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    return session_to_out(await lifecycle.get_session(db, session_id, client_id=current_user.id))


@router.post("/sessions/request", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
async def request_human_session(
    req: HumanSessionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    """상담사 세션 요청. doctor_id 가 없으면 관리자 배정 대기(pending_approval)."""
    session = await lifecycle.book_human_session(
        db,
        current_user.id,
        preferred_date=req.preferred_date,
        preferred_time=req.preferred_time,
        reason=req.reason,
        doctor_id=req.doctor_id,
    )
    return session_to_out(session)


@router.post("/sessions/ai", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
async def create_ai_session(
    req: AISessionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    session = await lifecycle.start_ai_session(
        db, current_user.id, topic=req.topic, scheduled_at=req.scheduled_at
    )
    return session_to_out(session)


@router.post("/sessions/{session_id}/start", response_model=SessionOut)
async def start_ai_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    """예약된 AI 세션 시작 (상담사 세션은 상담사가 시작)."""
    return session_to_out(await lifecycle.start_session(db, session_id, client_id=current_user.id))


@router.post("/sessions/{session_id}/cancel", response_model=SessionOut)
async def cancel_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    return session_to_out(await lifecycle.cancel_session(db, session_id, client_id=current_user.id))


@router.post("/sessions/{session_id}/complete", response_model=CompletionOut)
async def complete_session(
    session_id: int,
    req: ClientCompleteRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    """
    세션 종료 + (선택) 퀴즈 채점 + 인증 진행률 재계산.
    재계산이 실패해도 완료는 유지되고 certification_warning 으로 알린다.
    """
    result = await lifecycle.complete_session_by_client(
        db,
        session_id,
        current_user.id,
        quiz_answers=req.quiz_answers,
        rating=req.rating,
        feedback=req.feedback,
    )
    await publish_completion(result)
    return completion_to_out(result, "Session completed successfully")


@router.post("/sessions/{session_id}/quiz", response_model=CompletionOut)
async def submit_quiz(
    session_id: int,
    req: QuizSubmitRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    """이미 종료된(상담사가 닫은) 세션에 퀴즈만 제출."""
    result = await lifecycle.submit_quiz(db, session_id, current_user.id, req.answers)
    await publish_completion(result)
    return completion_to_out(result, "Quiz submitted successfully")


@router.get("/quiz/questions", response_model=List[QuizQuestionOut])
async def get_quiz_questions(current_user: User = Depends(client_user)):
    # 정답 인덱스는 내려주지 않는다
    return [QuizQuestionOut.model_validate(q) for q in DEFAULT_QUESTIONS]


@router.get("/progress", response_model=ClientProgressOut)
async def get_progress(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    return await dashboard.client_progress(db, current_user.id)


@router.get("/doctors", response_model=List[DoctorOut])
async def get_available_doctors(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    return await doctors.list_available_doctors(db)


@router.get("/certifications", response_model=List[CertificationProgressOut])
async def get_certifications(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    return await list_certifications_for_user(db, current_user.id)


@router.post("/payments", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
async def submit_payment(
    req: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    return await payments.submit_payment(
        db,
        current_user.id,
        amount=req.amount,
        payment_method=req.payment_method,
        currency=req.currency,
        transaction_id=req.transaction_id,
        account_name=req.account_name,
    )


@router.get("/payments", response_model=List[PaymentOut])
async def get_my_payments(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(client_user),
):
    return await payments.list_payments(db, user_id=current_user.id)
