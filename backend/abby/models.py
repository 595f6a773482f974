from __future__ import annotations
from typing import Optional, Literal
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    BigInteger, String, Text, Integer, DateTime, CheckConstraint,
    ForeignKey, Index, Boolean, JSON, Numeric, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB

from abby.db import Base

# SQLite 는 INTEGER PRIMARY KEY 만 autoincrement 하므로 테스트 DB 용 variant
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


Role = Literal["client", "doctor", "admin"]

class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role in ('client','doctor','admin')", name="ck_users_role"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, default="client", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    client_profile: Mapped[Optional["ClientProfile"]] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    doctor_profile: Mapped[Optional["DoctorProfile"]] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.email


class ClientProfile(Base):
    """클라이언트 누적 카운터. 인증 진행률 계산의 입력이 된다."""
    __tablename__ = "client_profiles"

    user_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    total_sessions_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_quizzes_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    primary_goals: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)

    user: Mapped["User"] = relationship(back_populates="client_profile")


class DoctorProfile(Base):
    __tablename__ = "doctor_profiles"

    user_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    license_number: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    specializations: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    education: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    experience: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    working_hours: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    session_duration: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    break_between_sessions: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship(back_populates="doctor_profile")


SessionType = Literal["ai", "human"]
SessionStatus = Literal["scheduled", "pending_approval", "in_progress", "completed", "cancelled"]

class Session(Base):
    """
    상담 세션 (AI 또는 상담사). 이력 보존을 위해 삭제하지 않는다.
    status 전이는 services/session_lifecycle.py 에서만 일어난다.
    """
    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint(
            "status in ('scheduled','pending_approval','in_progress','completed','cancelled')",
            name="ck_sessions_status",
        ),
        CheckConstraint("type in ('ai','human')", name="ck_sessions_type"),
        CheckConstraint(
            "client_rating is null or (client_rating between 1 and 5)",
            name="ck_sessions_client_rating",
        ),
        CheckConstraint(
            "doctor_rating is null or (doctor_rating between 1 and 5)",
            name="ck_sessions_doctor_rating",
        ),
        Index("idx_sessions_status", "status"),
        Index("idx_sessions_client", "client_id"),
        Index("idx_sessions_doctor_time", "doctor_id", "scheduled_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    client_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    doctor_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, default="scheduled", nullable=False)

    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    topic: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meeting_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # human 전용
    ai_model: Mapped[Optional[str]] = mapped_column(String, nullable=True)   # ai 전용

    client_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    client_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    doctor_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    client: Mapped["User"] = relationship(foreign_keys=[client_id])
    doctor: Mapped[Optional["User"]] = relationship(foreign_keys=[doctor_id])
    quiz_result: Mapped[Optional["QuizResult"]] = relationship(
        back_populates="session", uselist=False, cascade="all, delete-orphan"
    )
    session_notes: Mapped[list["SessionNote"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )


class QuizResult(Base):
    """세션 종료 시 한 번만 생성. 이후 수정하지 않는다."""
    __tablename__ = "quiz_results"
    __table_args__ = (
        CheckConstraint("score between 0 and 100", name="ck_quiz_results_score"),
        Index("idx_quiz_results_user_time", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("sessions.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    questions: Mapped[list] = mapped_column(JSONType, nullable=False)   # 질문 텍스트 목록
    answers: Mapped[list] = mapped_column(JSONType, nullable=False)     # 제출한 보기 인덱스
    correct: Mapped[list] = mapped_column(JSONType, nullable=False)     # 문항별 정답 여부
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    session: Mapped["Session"] = relationship(back_populates="quiz_result")


class SessionNote(Base):
    __tablename__ = "session_notes"
    __table_args__ = (
        Index("idx_notes_doctor_time", "doctor_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    doctor_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    diagnosis: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    treatment_plan: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_steps: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    session: Mapped["Session"] = relationship(back_populates="session_notes")


class Certification(Base):
    """인증 템플릿 (정적 참조 데이터)."""
    __tablename__ = "certifications"
    __table_args__ = (
        CheckConstraint("required_sessions >= 0 and required_quizzes >= 0", name="ck_certifications_requirements"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requirements: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    required_sessions: Mapped[int] = mapped_column(Integer, nullable=False)
    required_quizzes: Mapped[int] = mapped_column(Integer, nullable=False)
    minimum_score: Mapped[int] = mapped_column(Integer, default=70, nullable=False)
    badge_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


CertificationStatus = Literal["locked", "in_progress", "completed", "approved", "rejected"]

class UserCertification(Base):
    __tablename__ = "user_certifications"
    __table_args__ = (
        UniqueConstraint("user_id", "certification_id", name="uq_user_certification"),
        CheckConstraint(
            "status in ('locked','in_progress','completed','approved','rejected')",
            name="ck_user_certifications_status",
        ),
        CheckConstraint(
            "progress_percentage between 0 and 100",
            name="ck_user_certifications_progress",
        ),
        Index("idx_user_certifications_status", "status", "is_approved"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    certification_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("certifications.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String, default="locked", nullable=False)
    progress_percentage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    earned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    is_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_by: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user: Mapped["User"] = relationship(foreign_keys=[user_id])
    certification: Mapped["Certification"] = relationship()


PaymentStatus = Literal["pending", "completed", "rejected"]

class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("status in ('pending','completed','rejected')", name="ck_payments_status"),
        CheckConstraint("payment_method in ('paypal','bank_transfer')", name="ck_payments_method"),
        Index("idx_payments_status", "status", "is_verified"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    payment_method: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, default="pending", nullable=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verified_by: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    user: Mapped["User"] = relationship(foreign_keys=[user_id])


class ApiKey(Base):
    """평문 키는 생성 응답에서 한 번만 노출, DB 에는 sha256 해시만 저장."""
    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    permissions: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def key_preview(self) -> str:
        return f"{self.key_hash[:8]}...{self.key_hash[-8:]}"
