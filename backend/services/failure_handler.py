"""
Failure handler - records cancellations and gateway failures.

cancel() and fail_gateway() only apply to open orders (CREATED/VERIFYING).
Repeating the same call is a no-op; anything already VERIFIED or ENROLLED
has captured money and is refused with OrderAlreadyResolved. A refund
workflow is not part of this service.

The user starts over with a fresh order after either outcome.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import PaymentOrder
from domain.constants import MAX_FAILURE_REASON_LENGTH
from domain.enums import OrderStatus, OPEN_STATUSES
from domain.errors import OrderAlreadyResolvedError, OrderNotFoundError, PersistenceError
from services import order_store
from utils.timeutils import utcnow

logger = logging.getLogger(__name__)


def _clean_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    reason = reason.strip()
    return reason[:MAX_FAILURE_REASON_LENGTH] or None


async def _close_open_order(
    db: AsyncSession,
    order_id: str,
    target: OrderStatus,
    reason: str | None,
) -> PaymentOrder:
    order = await order_store.get_order(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    if order.status == target.value:
        logger.info(f"Order {order_id} already {target.value} - nothing to do")
        return order
    if OrderStatus(order.status) not in OPEN_STATUSES:
        raise OrderAlreadyResolvedError(order_id, order.status)

    values = {"completed_at": utcnow()}
    if reason is not None:
        values["failure_reason"] = reason

    try:
        won = await order_store.compare_and_set_status(
            db, order_id, expected=OPEN_STATUSES, new_status=target, **values,
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"❌ Could not mark order {order_id} {target.value}: {e}")
        raise PersistenceError(details={"orderId": order_id})

    order = await order_store.get_order(db, order_id)
    if not won and order.status != target.value:
        # A verify, expiry or the other close path won the race.
        raise OrderAlreadyResolvedError(order_id, order.status)
    return order


async def cancel(db: AsyncSession, order_id: str) -> PaymentOrder:
    """User abandoned checkout: CREATED/VERIFYING -> CANCELLED."""
    order = await _close_open_order(db, order_id, OrderStatus.CANCELLED, None)
    logger.info(f"Order {order_id} CANCELLED")
    return order


async def fail_gateway(db: AsyncSession, order_id: str, reason: str | None) -> PaymentOrder:
    """Gateway reported the payment failed: CREATED/VERIFYING -> FAILED."""
    reason = _clean_reason(reason) or "payment failed"
    order = await _close_open_order(db, order_id, OrderStatus.FAILED, reason)
    logger.info(f"Order {order_id} FAILED: {order.failure_reason}")
    return order


async def fail_after_verification(db: AsyncSession, order_id: str, reason: str) -> bool:
    """
    VERIFIED -> FAILED once enrollment can no longer be completed.

    Used by the sweeper after MAX_RESUME_ATTEMPTS. The payment was captured,
    so the order is flagged for reconciliation.

    Returns:
        True if this call moved the order.
    """
    won = await order_store.compare_and_set_status(
        db,
        order_id,
        expected=[OrderStatus.VERIFIED],
        new_status=OrderStatus.FAILED,
        failure_reason=_clean_reason(reason),
        needs_reconciliation=True,
        completed_at=utcnow(),
    )
    await db.commit()
    if won:
        logger.error(f"❌ Order {order_id} FAILED after verification: {reason}")
    return won
