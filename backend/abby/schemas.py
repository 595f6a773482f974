from __future__ import annotations
from typing import Optional, List, Dict, Any, Literal, Union, Annotated
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime, date, time
from decimal import Decimal

# 공통
class MessageOut(BaseModel):
    message: str

class UserBrief(BaseModel):
    """중첩 응답용 최소 사용자 정보"""
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str

    class Config:
        from_attributes = True

class UserPublic(BaseModel):
    """
    API 응답에서 비밀번호 해시 등 민감 정보를 제외한 사용자 정보.
    """
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ClientProfileOut(BaseModel):
    user_id: int
    total_sessions_completed: int
    total_quizzes_completed: int
    primary_goals: Optional[List[str]] = None

    class Config:
        from_attributes = True

class DoctorProfileOut(BaseModel):
    user_id: int
    license_number: str
    specializations: List[str] = []
    education: List[Any] = []
    experience: int = 0
    bio: Optional[str] = None
    working_hours: Optional[Dict[str, Any]] = None
    session_duration: int
    break_between_sessions: int
    is_available: bool
    is_approved: bool
    approved_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class DoctorOut(UserPublic):
    doctor_profile: Optional[DoctorProfileOut] = None

class AdminDoctorOut(DoctorOut):
    completed_sessions: int = 0

class AdminUserOut(UserPublic):
    client_profile: Optional[ClientProfileOut] = None
    doctor_profile: Optional[DoctorProfileOut] = None

class UsersPage(BaseModel):
    users: List[AdminUserOut]
    total: int
    page: int
    limit: int

class UserStatusUpdate(BaseModel):
    is_active: bool


# --- 세션 ---
class QuizResultOut(BaseModel):
    id: int
    session_id: int
    user_id: int
    questions: List[str]
    answers: List[int]
    correct: List[bool]
    score: int
    total_questions: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class _SessionBase(BaseModel):
    id: int
    client_id: int
    doctor_id: Optional[int] = None
    type: Literal["ai", "human"]
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    topic: Optional[str] = None
    meeting_url: Optional[str] = None
    ai_model: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    client: Optional[UserBrief] = None
    doctor: Optional[UserBrief] = None   # 배정 전이면 null

    class Config:
        from_attributes = True

class ScheduledSessionOut(_SessionBase):
    status: Literal["scheduled"]

class PendingSessionOut(_SessionBase):
    status: Literal["pending_approval"]

class InProgressSessionOut(_SessionBase):
    status: Literal["in_progress"]
    started_at: datetime

class CompletedSessionOut(_SessionBase):
    status: Literal["completed"]
    ended_at: datetime
    client_rating: Optional[int] = None
    client_feedback: Optional[str] = None
    doctor_rating: Optional[int] = None
    notes: Optional[str] = None
    summary: Optional[str] = None
    quiz_result: Optional[QuizResultOut] = None

class CancelledSessionOut(_SessionBase):
    status: Literal["cancelled"]

SessionOut = Annotated[
    Union[ScheduledSessionOut, PendingSessionOut, InProgressSessionOut, CompletedSessionOut, CancelledSessionOut],
    Field(discriminator="status"),
]

SESSION_OUT_BY_STATUS = {
    "scheduled": ScheduledSessionOut,
    "pending_approval": PendingSessionOut,
    "in_progress": InProgressSessionOut,
    "completed": CompletedSessionOut,
    "cancelled": CancelledSessionOut,
}

def session_to_out(session) -> _SessionBase:
    """ORM Session -> 상태별 응답 모델 (client/doctor/quiz_result 가 로드되어 있어야 함)"""
    return SESSION_OUT_BY_STATUS[session.status].model_validate(session)

class HumanSessionRequest(BaseModel):
    doctor_id: Optional[int] = None
    preferred_date: Optional[date] = None
    preferred_time: Optional[time] = None
    reason: Optional[str] = None

class AISessionRequest(BaseModel):
    topic: Optional[str] = None
    scheduled_at: Optional[datetime] = None   # 미래 시각이면 예약, 아니면 즉시 시작

class ClientCompleteRequest(BaseModel):
    quiz_answers: Optional[List[int]] = None
    rating: Optional[int] = None
    feedback: Optional[str] = None

class QuizSubmitRequest(BaseModel):
    answers: List[int]

class DoctorCompleteRequest(BaseModel):
    notes: Optional[str] = None
    doctor_rating: Optional[int] = None
    summary: Optional[str] = None

class MeetingUrlRequest(BaseModel):
    meeting_url: Optional[str] = None

class AssignDoctorRequest(BaseModel):
    doctor_id: int

class CompletionOut(BaseModel):
    message: str
    session: SessionOut
    quiz_result: Optional[QuizResultOut] = None
    counted_for_certification: bool = False
    earned_certification_ids: List[int] = []
    certification_warning: Optional[str] = None   # 진행률 재계산 실패 시에만

class QuizQuestionOut(BaseModel):
    id: str
    question: str
    options: List[str]
    category: str

    class Config:
        from_attributes = True


# --- 세션 노트 ---
class SessionBrief(BaseModel):
    id: int
    type: str
    status: str
    scheduled_at: Optional[datetime] = None
    client: Optional[UserBrief] = None

    class Config:
        from_attributes = True

class SessionNoteCreate(BaseModel):
    session_id: Optional[int] = None
    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None
    next_steps: Optional[str] = None

class SessionNoteUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None
    next_steps: Optional[str] = None

class SessionNoteOut(BaseModel):
    id: int
    session_id: int
    doctor_id: int
    title: str
    content: str
    tags: List[str] = []
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None
    next_steps: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    session: Optional[SessionBrief] = None

    class Config:
        from_attributes = True


# --- 상담사 ---
class DoctorCreate(BaseModel):
    email: Optional[EmailStr] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    license_number: Optional[str] = None
    specializations: List[str] = []
    education: List[Any] = []
    experience: int = 0
    bio: Optional[str] = None

class DoctorCreatedOut(BaseModel):
    message: str
    doctor: DoctorOut
    temp_password: str   # 운영에서는 메일로 보내야 함

class ApprovalRequest(BaseModel):
    approved: bool

class ScheduleUpdate(BaseModel):
    working_hours: Optional[Dict[str, Any]] = None
    session_duration: Optional[int] = None
    break_between_sessions: Optional[int] = None

class ScheduleOut(BaseModel):
    working_hours: Dict[str, Any]
    session_duration: int
    break_between_sessions: int
    sessions: List[SessionOut]
    week_start: datetime
    week_end: datetime


# --- 인증(Certification) ---
class CertificationOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    requirements: List[str] = []
    required_sessions: int
    required_quizzes: int
    minimum_score: int
    badge_image_url: Optional[str] = None

    class Config:
        from_attributes = True

class UserCertificationBrief(BaseModel):
    id: int
    user_id: int
    certification_id: int
    status: str
    progress_percentage: int
    earned_at: Optional[datetime] = None
    is_approved: bool
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class UserCertificationOut(UserCertificationBrief):
    certification: CertificationOut

class AdminUserCertificationOut(UserCertificationOut):
    user: UserPublic

class CertificationProgressOut(BaseModel):
    certification: CertificationOut
    user_progress: Optional[UserCertificationBrief] = None
    status: str
    is_unlocked: bool
    progress_percentage: int


# --- 결제 ---
class PaymentCreate(BaseModel):
    amount: Decimal
    payment_method: str
    currency: str = "USD"
    transaction_id: Optional[str] = None
    account_name: Optional[str] = None

class PaymentVerifyRequest(BaseModel):
    verified: bool

class PaymentOut(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    currency: str
    payment_method: str
    status: str
    transaction_id: Optional[str] = None
    account_name: Optional[str] = None
    is_verified: bool
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    user: Optional[UserBrief] = None

    class Config:
        from_attributes = True


# --- API 키 ---
class ApiKeyCreate(BaseModel):
    name: Optional[str] = None
    permissions: Optional[List[str]] = None
    expires_at: Optional[datetime] = None

class ApiKeyUpdate(BaseModel):
    name: Optional[str] = None
    permissions: Optional[List[str]] = None
    is_active: Optional[bool] = None

class ApiKeyOut(BaseModel):
    """key_hash 는 내보내지 않고 미리보기만"""
    id: int
    name: str
    key_preview: str
    permissions: List[str] = []
    is_active: bool
    created_by: Optional[int] = None
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    usage_count: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ApiKeyCreatedOut(BaseModel):
    message: str
    api_key: str   # 평문 키, 이 응답에서만 노출
    key_info: ApiKeyOut


# --- 대시보드 ---
class ClientStats(BaseModel):
    completed_sessions: int
    completed_quizzes: int
    certifications_earned: int
    progress_level: int

class ClientDashboardOut(BaseModel):
    profile: Optional[ClientProfileOut] = None
    recent_sessions: List[SessionOut]
    certifications: List[UserCertificationOut]
    next_session: Optional[SessionOut] = None
    stats: ClientStats

class SessionHistoryItem(BaseModel):
    session_id: int
    date: Optional[datetime] = None
    type: str
    status: str
    score: Optional[int] = None

class QuizTrendItem(BaseModel):
    date: Optional[datetime] = None
    score: int

class ClientProgressOut(BaseModel):
    total_sessions: int
    completed_sessions: int
    ai_sessions: int
    human_sessions: int
    average_quiz_score: float
    session_history: List[SessionHistoryItem]
    quiz_trend: List[QuizTrendItem]

class DoctorStats(BaseModel):
    total_sessions: int
    week_sessions: int
    today_sessions_count: int
    pending_requests_count: int

class DoctorDashboardOut(BaseModel):
    profile: Optional[DoctorProfileOut] = None
    today_sessions: List[SessionOut]
    pending_requests: List[SessionOut]
    recent_notes: List[SessionNoteOut]
    stats: DoctorStats

class AdminStats(BaseModel):
    total_clients: int
    total_doctors: int
    active_sessions: int
    completed_sessions: int
    sessions_by_status: Dict[str, int]
    sessions_by_type: Dict[str, int]
    pending_payments: int
    revenue: Decimal
    pending_approvals: int
    certifications_issued: int

class AdminDashboardOut(BaseModel):
    stats: AdminStats
    recent_users: List[UserPublic]
    recent_sessions: List[SessionOut]
    pending_payments_list: List[PaymentOut]

def completion_to_out(result, message: str) -> CompletionOut:
    """services.session_lifecycle.CompletionResult -> CompletionOut"""
    return CompletionOut(
        message=message,
        session=session_to_out(result.session),
        quiz_result=QuizResultOut.model_validate(result.quiz_result) if result.quiz_result else None,
        counted_for_certification=result.counted_for_certification,
        earned_certification_ids=result.earned_certification_ids,
        certification_warning=result.certification_warning,
    )
