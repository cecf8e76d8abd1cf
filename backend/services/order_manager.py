"""
Order manager - opens checkout orders and expires abandoned ones.

create_order():
    1. Load the course; the catalog price is authoritative
    2. Refuse if the user is already enrolled (no gateway call)
    3. Create the gateway order (one retry on transient failure)
    4. Persist the PaymentOrder as CREATED with expires_at = now + ORDER_TTL_MINUTES

If step 4 fails after step 3 succeeded, the gateway holds an order we never
recorded. It can never be paid against our records, so it is logged and
left to expire on the gateway side.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db_models import Course
from domain.constants import RECEIPT_PREFIX
from domain.errors import AlreadyEnrolledError, NotFoundError, PersistenceError, ValidationError
from services import aggregate_projector, enrollment_store, gateway_service, order_store
from utils.timeutils import isoformat, utcnow
from utils.validators import validate_amount, validate_currency, validate_identifier

logger = logging.getLogger(__name__)


def new_receipt() -> str:
    return f"{RECEIPT_PREFIX}{uuid.uuid4().hex[:20]}"


async def get_course(db: AsyncSession, course_id: str) -> Course:
    course = await db.get(Course, course_id)
    if not course:
        raise NotFoundError("Course", course_id, details={"courseId": course_id})
    return course


async def create_order(
    db: AsyncSession,
    *,
    user_id: str,
    course_id: str,
    amount: Optional[int] = None,
    currency: Optional[str] = None,
) -> dict:
    """
    Open a checkout order for (user, course).

    Args:
        amount: Optional client-side price; must equal the catalog price
        currency: Optional; must equal the course currency

    Returns:
        dict: {orderId, gatewayOrderId, receipt, amount, currency, expiresAt, keyId}

    Raises:
        NotFoundError (404): unknown course
        ValidationError (400): unpublished course, price/currency mismatch
        AlreadyEnrolledError (409): nothing left to buy
        GatewayError / GatewayUnavailableError (502/503)
        PersistenceError (503): gateway order created but not recorded
    """
    validate_identifier(user_id, "userId")
    validate_identifier(course_id, "courseId")

    course = await get_course(db, course_id)
    if not course.is_published:
        raise ValidationError("course is not available for purchase", field="courseId")

    if amount is not None:
        validate_amount(amount)
        if amount != course.price_minor:
            raise ValidationError(
                f"does not match the course price ({course.price_minor})",
                field="amount",
            )
    if currency is not None:
        validate_currency(currency)
        if currency != course.currency:
            raise ValidationError(
                f"does not match the course currency ({course.currency})",
                field="currency",
            )

    if await enrollment_store.is_enrolled(db, user_id, course_id):
        raise AlreadyEnrolledError(user_id, course_id)

    receipt = new_receipt()
    gateway_order_id = await gateway_service.create_gateway_order(
        amount=course.price_minor,
        currency=course.currency,
        receipt=receipt,
        notes={"userId": user_id, "courseId": course_id},
    )

    expires_at = utcnow() + timedelta(minutes=settings.order_ttl_minutes)
    try:
        await aggregate_projector.ensure_row(db, course_id)
        order = await order_store.insert_order(
            db,
            order_id=gateway_order_id,
            receipt=receipt,
            user_id=user_id,
            course_id=course_id,
            amount=course.price_minor,
            currency=course.currency,
            expires_at=expires_at,
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            f"❌ Gateway order {gateway_order_id} (receipt {receipt}) created but not "
            f"recorded: {e}"
        )
        raise PersistenceError(details={"receipt": receipt})

    logger.info(
        f"Order {order.order_id} created: user={user_id} course={course_id} "
        f"amount={order.amount} {order.currency}"
    )

    return {
        "orderId": order.order_id,
        "gatewayOrderId": order.order_id,
        "receipt": order.receipt,
        "amount": order.amount,
        "currency": order.currency,
        "expiresAt": isoformat(order.expires_at),
        "keyId": settings.gateway_key_id,
    }


async def expire_stale_orders(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Move CREATED/VERIFYING orders past expires_at to EXPIRED.

    Returns:
        Number of orders expired.
    """
    now = now or utcnow()
    count = await order_store.expire_open_orders(db, now)
    await db.commit()
    if count:
        logger.info(f"Expired {count} stale order(s)")
    return count
