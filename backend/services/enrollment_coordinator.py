"""
Enrollment coordinator - turns a verified payment into exactly one enrollment.

resolve(order_id, payment_id, signature) is the single entry point for the
client's verify call, the gateway webhook and the sweeper's re-drive. It is
safe to call any number of times, concurrently, from any process:

    1. Load the order (OrderNotFound)
    2. ENROLLED                      -> replay the stored success result
    3. CANCELLED / FAILED / EXPIRED  -> OrderNotVerifiable / OrderExpired
    4. CREATED / VERIFYING           -> HMAC check (InvalidSignature, order untouched)
    5. CAS {CREATED, VERIFYING} -> VERIFIED, committed on its own
    6. INSERT enrollment (unique on user+course)
    7. aggregate += 1 and CAS VERIFIED -> ENROLLED, same transaction as 6

A crash between 5 and 7 leaves the order VERIFIED with no enrollment.
resolve() with the same proof, or resume() from the sweeper, picks it up at
step 6 without re-running the HMAC.

Coordination lives entirely in the database: the order CAS picks one winner
per order, and the enrollment unique constraint picks one winner per
(user, course) across orders.
"""
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db_models import PaymentOrder
from domain.enums import OrderStatus, OPEN_STATUSES, DEAD_STATUSES
from domain.errors import (
    InvalidSignatureError,
    OrderExpiredError,
    OrderNotFoundError,
    OrderNotVerifiableError,
    PersistenceError,
    ValidationError,
)
from exceptions import EnrollmentConflict
from services import aggregate_projector, enrollment_store, order_store
from services.signature_service import verify_payment_signature
from utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentResult:
    """Success outcome of resolve(). Replays produce an equal to_dict()."""
    order_id: str
    enrollment: dict
    course_id: str
    total_enrolled: int
    replayed: bool = False
    needs_reconciliation: bool = False

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "status": OrderStatus.ENROLLED.value,
            "enrollment": dict(self.enrollment),
            "course": {
                "courseId": self.course_id,
                "totalEnrolled": self.total_enrolled,
            },
        }


def _short(signature) -> str:
    if not isinstance(signature, str):
        return "<invalid>"
    return f"{signature[:8]}…"


def _proof_matches(order: PaymentOrder, payment_id, signature) -> bool:
    """Compare a resubmitted proof against the one already accepted."""
    if not isinstance(payment_id, str) or not isinstance(signature, str):
        return False
    if not order.payment_id or not order.signature:
        return False
    try:
        return (
            hmac.compare_digest(order.payment_id.encode("ascii"), payment_id.encode("ascii"))
            and hmac.compare_digest(order.signature.encode("ascii"), signature.encode("ascii"))
        )
    except UnicodeEncodeError:
        return False


def _reject_terminal(order: PaymentOrder):
    if order.status == OrderStatus.EXPIRED.value:
        raise OrderExpiredError(order.order_id)
    raise OrderNotVerifiableError(order.order_id, order.status)


# ════════════════════════════════════════════════════════════════════
# Replay
# ════════════════════════════════════════════════════════════════════


async def _replay(db: AsyncSession, order: PaymentOrder) -> EnrollmentResult:
    """Rebuild the original success result from what the ENROLLED order recorded."""
    enrollment = None
    if order.enrollment_id is not None:
        enrollment = await enrollment_store.get_enrollment_by_id(db, order.enrollment_id)
    if enrollment is None:
        enrollment = await enrollment_store.get_enrollment(db, order.user_id, order.course_id)
    if enrollment is None:
        logger.error(f"❌ Order {order.order_id} is ENROLLED but no enrollment row exists")
        raise PersistenceError(details={"orderId": order.order_id})

    total = order.total_enrolled_snapshot
    if total is None:
        total = await aggregate_projector.current_total(db, order.course_id)

    return EnrollmentResult(
        order_id=order.order_id,
        enrollment=enrollment_store.enrollment_to_dict(enrollment),
        course_id=order.course_id,
        total_enrolled=total,
        replayed=True,
        needs_reconciliation=bool(order.needs_reconciliation),
    )


# ════════════════════════════════════════════════════════════════════
# Completion (steps 6-7)
# ════════════════════════════════════════════════════════════════════


async def _after_lost_completion(db: AsyncSession, order_id: str) -> EnrollmentResult:
    """The VERIFIED -> ENROLLED CAS changed nothing: see who moved the order."""
    order = await order_store.get_order(db, order_id)
    if order is not None and order.status == OrderStatus.ENROLLED.value:
        return await _replay(db, order)
    if order is not None and OrderStatus(order.status) in DEAD_STATUSES:
        _reject_terminal(order)
    raise PersistenceError(details={"orderId": order_id})


async def _settle_conflict(
    db: AsyncSession,
    order_id: str,
    user_id: str,
    course_id: str,
) -> EnrollmentResult:
    """
    The (user, course) pair is already enrolled.

    Same order: a concurrent resolver finished first, so replay its result.
    Different order: the user paid twice. The money is captured, so this
    order is marked ENROLLED against the existing enrollment and flagged for
    reconciliation. The aggregate is not touched.
    """
    existing = await enrollment_store.get_enrollment(db, user_id, course_id)
    if existing is None:
        logger.error(f"❌ Enrollment conflict for order {order_id} but no row found")
        raise PersistenceError(details={"orderId": order_id})

    if existing.source_order_id == order_id:
        order = await order_store.get_order(db, order_id)
        if order is not None and order.status == OrderStatus.ENROLLED.value:
            return await _replay(db, order)
        raise PersistenceError(details={"orderId": order_id})

    logger.warning(
        f"⚠️  Order {order_id}: user {user_id} already enrolled in {course_id} "
        f"via order {existing.source_order_id} - flagged for reconciliation"
    )
    total = await aggregate_projector.current_total(db, course_id)
    won = await order_store.compare_and_set_status(
        db,
        order_id,
        expected=[OrderStatus.VERIFIED],
        new_status=OrderStatus.ENROLLED,
        enrollment_id=existing.id,
        total_enrolled_snapshot=total,
        needs_reconciliation=True,
        completed_at=utcnow(),
    )
    if not won:
        await db.rollback()
        return await _after_lost_completion(db, order_id)
    await db.commit()

    return EnrollmentResult(
        order_id=order_id,
        enrollment=enrollment_store.enrollment_to_dict(existing),
        course_id=course_id,
        total_enrolled=total,
        needs_reconciliation=True,
    )


async def _complete(db: AsyncSession, order: PaymentOrder) -> EnrollmentResult:
    """Steps 6-7 for an order already in VERIFIED."""
    # Rollbacks expire ORM instances; keep plain values.
    order_id, user_id, course_id = order.order_id, order.user_id, order.course_id

    try:
        enrollment = await enrollment_store.insert_enrollment(
            db, user_id=user_id, course_id=course_id, source_order_id=order_id,
        )
    except EnrollmentConflict:
        return await _settle_conflict(db, order_id, user_id, course_id)

    total = await aggregate_projector.increment(db, course_id)
    won = await order_store.compare_and_set_status(
        db,
        order_id,
        expected=[OrderStatus.VERIFIED],
        new_status=OrderStatus.ENROLLED,
        enrollment_id=enrollment.id,
        total_enrolled_snapshot=total,
        completed_at=utcnow(),
    )
    if not won:
        await db.rollback()
        return await _after_lost_completion(db, order_id)
    await db.commit()

    logger.info(
        f"✅ Order {order_id} ENROLLED: user={user_id} course={course_id} "
        f"enrollment={enrollment.id} totalEnrolled={total}"
    )
    return EnrollmentResult(
        order_id=order_id,
        enrollment=enrollment_store.enrollment_to_dict(enrollment),
        course_id=course_id,
        total_enrolled=total,
    )


# ════════════════════════════════════════════════════════════════════
# Public API
# ════════════════════════════════════════════════════════════════════


async def _resolve(
    db: AsyncSession,
    order_id: str,
    payment_id: str,
    signature: str,
    secret: str,
) -> EnrollmentResult:
    order = await order_store.get_order(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)

    status = OrderStatus(order.status)
    if status == OrderStatus.ENROLLED:
        logger.info(f"Order {order_id} already ENROLLED - replaying result")
        return await _replay(db, order)
    if status in DEAD_STATUSES:
        _reject_terminal(order)

    if status == OrderStatus.VERIFIED:
        # Proof was accepted before; a resubmission must match it exactly.
        if not _proof_matches(order, payment_id, signature):
            logger.warning(f"Order {order_id}: proof differs from the accepted one")
            raise InvalidSignatureError(order_id)
        logger.info(f"Order {order_id} resuming from VERIFIED")
        return await _complete(db, order)

    now = utcnow()
    if order.expires_at <= now:
        raise OrderExpiredError(order_id)

    if not verify_payment_signature(order_id, payment_id, signature, secret):
        logger.warning(
            f"Invalid payment signature for order {order_id} "
            f"(paymentId={payment_id!r}, signature={_short(signature)})"
        )
        raise InvalidSignatureError(order_id)

    won = await order_store.compare_and_set_status(
        db,
        order_id,
        expected=OPEN_STATUSES,
        new_status=OrderStatus.VERIFIED,
        unexpired_at=now,
        payment_id=payment_id,
        signature=signature,
        verified_at=now,
    )
    await db.commit()

    order = await order_store.get_order(db, order_id)
    if won:
        logger.info(f"Order {order_id} VERIFIED (paymentId={payment_id})")
        return await _complete(db, order)

    # Lost the race: another resolver, the sweeper or a cancel got there first.
    logger.warning(f"Order {order_id}: lost verify race, now {order.status}")
    status = OrderStatus(order.status)
    if status == OrderStatus.ENROLLED:
        return await _replay(db, order)
    if status == OrderStatus.VERIFIED:
        # The winner stored its proof; only the same proof may finish the work.
        if not _proof_matches(order, payment_id, signature):
            logger.warning(f"Order {order_id}: proof differs from the one that won verification")
            raise InvalidSignatureError(order_id)
        return await _complete(db, order)
    if status in DEAD_STATUSES:
        _reject_terminal(order)
    raise OrderExpiredError(order_id)


async def resolve(
    db: AsyncSession,
    order_id: str,
    payment_id: str,
    signature: str,
    *,
    secret: Optional[str] = None,
) -> EnrollmentResult:
    """
    Idempotently convert a payment proof into an enrollment.

    Args:
        secret: HMAC key; defaults to GATEWAY_KEY_SECRET

    Returns:
        EnrollmentResult; identical (to_dict) for every caller of the same order

    Raises:
        OrderNotFoundError (404)
        InvalidSignatureError (400): order left unchanged
        OrderExpiredError / OrderNotVerifiableError (410)
        PersistenceError (503): storage failed, the call can be repeated
    """
    secret = secret or settings.require_payment_secret()
    try:
        return await _resolve(db, order_id, payment_id, signature, secret)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"❌ Storage error while resolving order {order_id}: {e}")
        raise PersistenceError(details={"orderId": order_id})


async def resume(db: AsyncSession, order_id: str) -> EnrollmentResult:
    """
    Finish an order already accepted as VERIFIED (reconciliation re-drive).

    No proof is needed: it was checked when the order entered VERIFIED.
    """
    try:
        order = await order_store.get_order(db, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        status = OrderStatus(order.status)
        if status == OrderStatus.ENROLLED:
            return await _replay(db, order)
        if status in DEAD_STATUSES:
            _reject_terminal(order)
        if status != OrderStatus.VERIFIED:
            raise ValidationError("order has no accepted payment proof", field="orderId")
        return await _complete(db, order)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"❌ Storage error while resuming order {order_id}: {e}")
        raise PersistenceError(details={"orderId": order_id})
