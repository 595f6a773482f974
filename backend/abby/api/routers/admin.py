from __future__ import annotations
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from abby.db import get_db
from abby.models import User
from abby.schemas import (
    MessageOut, SessionOut, session_to_out, AssignDoctorRequest, AdminDashboardOut,
    UsersPage, UserStatusUpdate, UserPublic,
    AdminDoctorOut, DoctorOut, DoctorCreate, DoctorCreatedOut, ApprovalRequest,
    PaymentOut, PaymentVerifyRequest,
    ApiKeyCreate, ApiKeyUpdate, ApiKeyOut, ApiKeyCreatedOut,
    CertificationOut, AdminUserCertificationOut,
)
from abby.services import api_keys, certification, dashboard, doctors, payments, users
from abby.services import session_lifecycle as lifecycle
from abby.services.auth_service import require_role

router = APIRouter(prefix="/admin", tags=["admin"])

admin_user = require_role("admin")


@router.get("/dashboard", response_model=AdminDashboardOut)
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    data = await dashboard.admin_dashboard(db)
    data["recent_sessions"] = [session_to_out(s) for s in data["recent_sessions"]]
    return AdminDashboardOut.model_validate(data, from_attributes=True)


# --- 사용자 관리 ---
@router.get("/users", response_model=UsersPage)
async def get_users(
    role: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    rows, total = await users.list_users(
        db, role=role, status=status_filter, search=search, page=page, limit=limit
    )
    return {"users": rows, "total": total, "page": page, "limit": limit}


@router.put("/users/{user_id}/status", response_model=UserPublic)
async def update_user_status(
    user_id: int,
    req: UserStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    return await users.set_user_active(db, user_id, req.is_active, current_user.id)


# --- 세션 관리 ---
@router.get("/sessions", response_model=List[SessionOut])
async def get_sessions(
    status_filter: Optional[str] = Query(None, alias="status"),
    session_type: Optional[str] = Query(None, alias="type"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    sessions = await lifecycle.list_sessions(db, status=status_filter, session_type=session_type)
    return [session_to_out(s) for s in sessions]


@router.put("/sessions/{session_id}/assign", response_model=SessionOut)
async def assign_doctor(
    session_id: int,
    req: AssignDoctorRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    """승인 대기 세션에 상담사 배정 -> scheduled"""
    return session_to_out(await lifecycle.assign_doctor(db, session_id, req.doctor_id))


@router.post("/sessions/{session_id}/cancel", response_model=SessionOut)
async def cancel_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    return session_to_out(await lifecycle.cancel_session(db, session_id))


# --- 상담사 관리 ---
@router.get("/doctors", response_model=List[AdminDoctorOut])
async def get_doctors(
    approved: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    rows = await doctors.list_doctors_for_admin(db, approved=approved, search=search)
    return [
        AdminDoctorOut.model_validate(doctor).model_copy(update={"completed_sessions": completed})
        for doctor, completed in rows
    ]


@router.post("/doctors", response_model=DoctorCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_doctor(
    req: DoctorCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    created = await doctors.create_doctor(
        db,
        email=req.email,
        first_name=req.first_name,
        last_name=req.last_name,
        license_number=req.license_number,
        specializations=req.specializations,
        education=req.education,
        experience=req.experience,
        bio=req.bio,
    )
    return DoctorCreatedOut(
        message="Doctor created successfully",
        doctor=DoctorOut.model_validate(created.user),
        temp_password=created.temp_password,
    )


@router.put("/doctors/{doctor_id}/approval", response_model=DoctorOut)
async def set_doctor_approval(
    doctor_id: int,
    req: ApprovalRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    return await doctors.set_doctor_approval(db, doctor_id, req.approved)


# --- 결제 관리 ---
@router.get("/payments", response_model=List[PaymentOut])
async def get_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    method: Optional[str] = Query(None),
    verified: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    return await payments.list_payments(db, status=status_filter, method=method, verified=verified)


@router.put("/payments/{payment_id}/verify", response_model=PaymentOut)
async def verify_payment(
    payment_id: int,
    req: PaymentVerifyRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    return await payments.verify_payment(db, payment_id, req.verified, current_user.id)


@router.put("/payments/{payment_id}/reject", response_model=PaymentOut)
async def reject_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    return await payments.reject_payment(db, payment_id, current_user.id)


# --- API 키 ---
@router.get("/api-keys", response_model=List[ApiKeyOut])
async def get_api_keys(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    return await api_keys.list_api_keys(db)


@router.post("/api-keys", response_model=ApiKeyCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    req: ApiKeyCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    key, raw_key = await api_keys.create_api_key(
        db, current_user.id, req.name, permissions=req.permissions, expires_at=req.expires_at
    )
    return ApiKeyCreatedOut(
        message="API key created successfully",
        api_key=raw_key,
        key_info=ApiKeyOut.model_validate(key),
    )


@router.put("/api-keys/{key_id}", response_model=ApiKeyOut)
async def update_api_key(
    key_id: int,
    req: ApiKeyUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    return await api_keys.update_api_key(db, key_id, req.model_dump(exclude_unset=True))


@router.delete("/api-keys/{key_id}", response_model=MessageOut)
async def delete_api_key(
    key_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    await api_keys.delete_api_key(db, key_id)
    return {"message": "API key deleted successfully"}


# --- 인증(Certification) 관리 ---
@router.get("/certifications", response_model=List[AdminUserCertificationOut])
async def get_user_certifications(
    status_filter: Optional[str] = Query(None, alias="status"),
    pending: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    """pending=true 이면 승인 대기(completed & 미승인)만"""
    return await certification.list_user_certifications(db, status=status_filter, pending=pending)


@router.put("/certifications/{user_certification_id}/approve", response_model=AdminUserCertificationOut)
async def approve_certification(
    user_certification_id: int,
    req: ApprovalRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    return await certification.set_certification_approval(
        db, user_certification_id, req.approved, current_user.id
    )


@router.post("/certifications/setup", response_model=List[CertificationOut])
async def setup_certifications(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_user),
):
    """기본 인증 템플릿 생성. 이미 있는 이름은 건너뛰고 새로 만든 것만 반환."""
    return await certification.setup_default_certifications(db)
