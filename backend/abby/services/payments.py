# backend/abby/services/payments.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from abby.errors import NotFoundError, ValidationError
from abby.models import Payment, utcnow

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("paypal", "bank_transfer")


async def get_payment(db: AsyncSession, payment_id: int) -> Payment:
    q = (
        select(Payment)
        .where(Payment.id == payment_id)
        .options(selectinload(Payment.user))
        .execution_options(populate_existing=True)
    )
    payment = (await db.execute(q)).scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


async def submit_payment(
    db: AsyncSession,
    user_id: int,
    *,
    amount: Decimal,
    payment_method: str,
    currency: str = "USD",
    transaction_id: Optional[str] = None,
    account_name: Optional[str] = None,
) -> Payment:
    """클라이언트 수동 결제 제출. 관리자 확인 전까지 pending."""
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be positive")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError("Payment method must be paypal or bank_transfer")

    payment = Payment(
        user_id=user_id,
        amount=amount,
        currency=(currency or "USD").upper(),
        payment_method=payment_method,
        transaction_id=transaction_id,
        account_name=account_name,
    )
    db.add(payment)
    await db.commit()
    return await get_payment(db, payment.id)


async def list_payments(
    db: AsyncSession,
    *,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    method: Optional[str] = None,
    verified: Optional[bool] = None,
) -> list[Payment]:
    q = select(Payment).options(selectinload(Payment.user))
    if user_id is not None:
        q = q.where(Payment.user_id == user_id)
    if status:
        q = q.where(Payment.status == status)
    if method:
        q = q.where(Payment.payment_method == method)
    if verified is not None:
        q = q.where(Payment.is_verified.is_(verified))
    q = q.order_by(Payment.created_at.desc(), Payment.id.desc())
    return list((await db.execute(q)).scalars().all())


async def verify_payment(db: AsyncSession, payment_id: int, verified: bool, admin_id: int) -> Payment:
    """
    Verify (-> completed) or un-verify (-> back to pending) a payment.
    Only verified completed payments count as revenue.
    """
    payment = await get_payment(db, payment_id)
    payment.is_verified = verified
    payment.verified_by = admin_id if verified else None
    payment.verified_at = utcnow() if verified else None
    payment.status = "completed" if verified else "pending"
    await db.commit()
    logger.info("payment %s %s by admin %s", payment_id, payment.status, admin_id)
    return await get_payment(db, payment_id)


async def reject_payment(db: AsyncSession, payment_id: int, admin_id: int) -> Payment:
    payment = await get_payment(db, payment_id)
    payment.is_verified = False
    payment.verified_by = admin_id
    payment.verified_at = utcnow()
    payment.status = "rejected"
    await db.commit()
    logger.info("payment %s rejected by admin %s", payment_id, admin_id)
    return await get_payment(db, payment_id)
