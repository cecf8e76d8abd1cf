"""
Gateway webhook processing.

    payment.captured -> enrollment_coordinator.resolve()  (same path as the client's verify)
    payment.failed   -> failure_handler.fail_gateway()

Gateways redeliver until they get a 2xx. Every processed event_id is stored
in gateway_events; a redelivery is acknowledged as "duplicate" without being
processed again. The row is written only after processing succeeds, so a
storage failure (503) lets the gateway retry. Two copies racing in parallel
both reach resolve(), which is idempotent.

Outcomes that no retry can change (unknown order, dead order, ...) are
acknowledged with 200 so the gateway stops redelivering.
"""
import logging

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import GatewayEvent
from domain.enums import WebhookEvent
from domain.errors import (
    OrderAlreadyResolvedError,
    OrderExpiredError,
    OrderNotFoundError,
    OrderNotVerifiableError,
    ValidationError,
    error_code,
)
from models import GatewayWebhookRequest
from services import enrollment_coordinator, failure_handler

logger = logging.getLogger(__name__)

# Rejections acknowledged with 200: redelivering cannot change them.
_FINAL_REJECTIONS = (
    OrderNotFoundError,
    OrderExpiredError,
    OrderNotVerifiableError,
    OrderAlreadyResolvedError,
)


async def _already_processed(db: AsyncSession, event_id: str) -> bool:
    result = await db.execute(select(GatewayEvent.id).where(GatewayEvent.event_id == event_id))
    return result.scalar_one_or_none() is not None


async def _record(db: AsyncSession, event: GatewayWebhookRequest, outcome: str) -> None:
    insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
    await db.execute(
        insert(GatewayEvent)
        .values(
            event_id=event.event_id,
            event_type=event.event,
            order_id=event.payment.order_id,
            outcome=outcome,
        )
        .on_conflict_do_nothing(index_elements=["event_id"])
    )
    await db.commit()


async def _dispatch(db: AsyncSession, event: GatewayWebhookRequest) -> dict:
    payment = event.payment

    if event.event == WebhookEvent.PAYMENT_CAPTURED.value:
        if not payment.payment_id or not payment.signature:
            raise ValidationError("payment.captured requires paymentId and signature", field="payment")
        result = await enrollment_coordinator.resolve(
            db, payment.order_id, payment.payment_id, payment.signature,
        )
        return {
            "status": "replayed" if result.replayed else "enrolled",
            "result": result.to_dict(),
        }

    if event.event == WebhookEvent.PAYMENT_FAILED.value:
        order = await failure_handler.fail_gateway(db, payment.order_id, payment.error_description)
        return {"status": "failed", "orderId": order.order_id}

    logger.info(f"Ignoring webhook event type {event.event!r} ({event.event_id})")
    return {"status": "ignored"}


async def process_event(db: AsyncSession, event: GatewayWebhookRequest) -> dict:
    """
    Apply one authenticated webhook delivery.

    Returns:
        dict: {status: enrolled|replayed|failed|ignored|duplicate|rejected, ...}

    Raises:
        InvalidSignatureError (400), ValidationError (400), PersistenceError (503)
    """
    if await _already_processed(db, event.event_id):
        logger.info(f"Webhook {event.event_id} already processed - acknowledging duplicate")
        return {"status": "duplicate", "eventId": event.event_id}

    try:
        outcome = await _dispatch(db, event)
    except _FINAL_REJECTIONS as e:
        code = error_code(e)
        logger.warning(
            f"Webhook {event.event_id} ({event.event}) for order "
            f"{event.payment.order_id} rejected: {code}"
        )
        outcome = {"status": "rejected", "reason": code}

    await _record(db, event, outcome["status"])
    return {"eventId": event.event_id, **outcome}
