"""
Order store - persistence for payment orders.

Every status change goes through compare_and_set_status(): a single
conditional UPDATE whose WHERE clause names the statuses the caller expects.
The database decides the winner, so independent processes (API workers,
webhook handler, sweeper) can race on the same order safely.

Functions here never commit; transaction boundaries belong to the caller.
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import PaymentOrder
from domain.enums import OrderStatus
from utils.timeutils import isoformat, utcnow

logger = logging.getLogger(__name__)


async def get_order(db: AsyncSession, order_id: str) -> Optional[PaymentOrder]:
    """
    Load an order by gateway order id.

    Always re-reads the row: after losing a race the caller must see the
    committed state, not the copy cached in the session.
    """
    result = await db.execute(
        select(PaymentOrder)
        .where(PaymentOrder.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def insert_order(
    db: AsyncSession,
    *,
    order_id: str,
    receipt: str,
    user_id: str,
    course_id: str,
    amount: int,
    currency: str,
    expires_at: datetime,
) -> PaymentOrder:
    order = PaymentOrder(
        order_id=order_id,
        receipt=receipt,
        user_id=user_id,
        course_id=course_id,
        amount=amount,
        currency=currency,
        status=OrderStatus.CREATED.value,
        expires_at=expires_at,
    )
    db.add(order)
    await db.flush()
    return order


async def compare_and_set_status(
    db: AsyncSession,
    order_id: str,
    *,
    expected: Iterable[OrderStatus],
    new_status: OrderStatus,
    unexpired_at: Optional[datetime] = None,
    **values,
) -> bool:
    """
    Move an order to new_status only if its stored status is in `expected`.

    Args:
        unexpired_at: when given, additionally require expires_at > unexpired_at
        **values: extra columns written in the same statement

    Returns:
        True if this caller won (exactly one row changed).
    """
    stmt = (
        update(PaymentOrder)
        .where(
            PaymentOrder.order_id == order_id,
            PaymentOrder.status.in_([s.value for s in expected]),
        )
        .values(status=new_status.value, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if unexpired_at is not None:
        stmt = stmt.where(PaymentOrder.expires_at > unexpired_at)

    result = await db.execute(stmt)
    return result.rowcount == 1


async def increment_resume_attempts(db: AsyncSession, order_id: str, reason: str) -> None:
    """Record a failed re-drive of a VERIFIED order."""
    await db.execute(
        update(PaymentOrder)
        .where(
            PaymentOrder.order_id == order_id,
            PaymentOrder.status == OrderStatus.VERIFIED.value,
        )
        .values(
            resume_attempts=PaymentOrder.resume_attempts + 1,
            failure_reason=reason,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )


async def expire_open_orders(db: AsyncSession, now: datetime) -> int:
    """Bulk CREATED/VERIFYING -> EXPIRED for rows past expires_at."""
    result = await db.execute(
        update(PaymentOrder)
        .where(
            PaymentOrder.status.in_([OrderStatus.CREATED.value, OrderStatus.VERIFYING.value]),
            PaymentOrder.expires_at <= now,
        )
        .values(status=OrderStatus.EXPIRED.value, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def list_stuck_verified(db: AsyncSession, verified_before: datetime, limit: int = 100) -> list[PaymentOrder]:
    """VERIFIED orders older than the grace period (crash leftovers)."""
    result = await db.execute(
        select(PaymentOrder)
        .where(
            PaymentOrder.status == OrderStatus.VERIFIED.value,
            PaymentOrder.verified_at <= verified_before,
        )
        .order_by(PaymentOrder.verified_at)
        .limit(limit)
    )
    return result.scalars().all()


async def list_user_orders(
    db: AsyncSession,
    user_id: str,
    *,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[PaymentOrder], int]:
    """A user's orders, newest first, plus the total count."""
    total = await db.scalar(
        select(func.count(PaymentOrder.id)).where(PaymentOrder.user_id == user_id)
    )
    result = await db.execute(
        select(PaymentOrder)
        .where(PaymentOrder.user_id == user_id)
        .order_by(PaymentOrder.created_at.desc(), PaymentOrder.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return result.scalars().all(), total or 0


def order_to_dict(order: PaymentOrder, *, include_audit: bool = False) -> dict:
    """Serialize an order for API responses. Signatures are never exposed."""
    data = {
        "orderId": order.order_id,
        "receipt": order.receipt,
        "userId": order.user_id,
        "courseId": order.course_id,
        "amount": order.amount,
        "currency": order.currency,
        "status": order.status,
        "paymentId": order.payment_id,
        "createdAt": isoformat(order.created_at),
        "expiresAt": isoformat(order.expires_at),
        "completedAt": isoformat(order.completed_at),
    }
    if include_audit:
        data.update({
            "verifiedAt": isoformat(order.verified_at),
            "enrollmentId": order.enrollment_id,
            "needsReconciliation": order.needs_reconciliation,
            "failureReason": order.failure_reason,
            "resumeAttempts": order.resume_attempts,
        })
    return data
