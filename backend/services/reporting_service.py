"""
Reporting service - read-only views over orders and enrollments.
"""
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import PaymentOrder
from domain.enums import OrderStatus
from services import aggregate_projector, order_manager, order_store

logger = logging.getLogger(__name__)


async def payment_history(db: AsyncSession, user_id: str, limit: int, offset: int) -> tuple[list[dict], int]:
    orders, total = await order_store.list_user_orders(db, user_id, limit=limit, offset=offset)
    return [order_store.order_to_dict(o) for o in orders], total


async def course_stats(db: AsyncSession, course_id: str) -> dict:
    """
    Payment and enrollment figures for one course.

    Revenue only counts ENROLLED orders: money for cancelled, failed or
    expired orders was never captured. Orders that ended up pointing at an
    earlier enrollment (needsReconciliation) are reported separately.
    """
    course = await order_manager.get_course(db, course_id)

    row = (await db.execute(
        select(
            func.count(PaymentOrder.id),
            func.coalesce(func.sum(PaymentOrder.amount), 0),
        ).where(
            PaymentOrder.course_id == course_id,
            PaymentOrder.status == OrderStatus.ENROLLED.value,
        )
    )).one()
    payment_count, revenue = int(row[0]), int(row[1])

    reconciliation_count = await db.scalar(
        select(func.count(PaymentOrder.id)).where(
            PaymentOrder.course_id == course_id,
            PaymentOrder.needs_reconciliation.is_(True),
        )
    )

    total_enrolled = await aggregate_projector.current_total(db, course_id)
    live = await aggregate_projector.live_count(db, course_id)
    if total_enrolled != live:
        logger.warning(
            f"Aggregate for course {course_id} reads {total_enrolled}, live count is {live}"
        )

    return {
        "courseId": course.course_id,
        "title": course.title,
        "currency": course.currency,
        "totalRevenue": revenue,
        "paymentCount": payment_count,
        "averagePayment": (revenue // payment_count) if payment_count else 0,
        "totalEnrolled": total_enrolled,
        "liveEnrollmentCount": live,
        "needsReconciliation": reconciliation_count or 0,
    }
