"""
Checkout endpoints - order creation, payment verification, cancellation.

    POST /orders                       open a gateway order for a course
    GET  /orders                       caller's payment history
    GET  /orders/{orderId}             one order (owner or staff)
    POST /orders/{orderId}/verify      submit the gateway proof -> enrollment
    POST /orders/{orderId}/cancel      user abandoned checkout
    POST /orders/{orderId}/fail        checkout widget reported a failed payment
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import PaymentOrder
from deps import (
    CurrentUser,
    Pagination,
    get_db,
    load_accessible_order,
    load_owned_order,
    pagination_params,
    require_user,
)
from domain.responses import paginated_response, success_response
from middleware.rate_limit import rate_limit
from models import CreateOrderRequest, FailOrderRequest, VerifyPaymentRequest
from services import enrollment_coordinator, failure_handler, order_manager, order_store, reporting_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", status_code=201)
async def create_order(
    req: CreateOrderRequest,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(max_requests=20, window_seconds=60)),
):
    """Create a gateway order for the course at its catalog price."""
    result = await order_manager.create_order(
        db,
        user_id=user.user_id,
        course_id=req.course,
        amount=req.amount,
        currency=req.currency,
    )
    return success_response(result)


@router.get("")
async def list_orders(
    user: CurrentUser = Depends(require_user),
    page: Pagination = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
):
    """Caller's orders, newest first."""
    items, total = await reporting_service.payment_history(
        db, user.user_id, limit=page["limit"], offset=page["offset"]
    )
    return paginated_response(items, limit=page["limit"], offset=page["offset"], total=total)


@router.get("/{order_id}")
async def get_order(
    order: PaymentOrder = Depends(load_accessible_order),
    user: CurrentUser = Depends(require_user),
):
    return success_response(order_store.order_to_dict(order, include_audit=user.is_staff))


@router.post("/{order_id}/verify")
async def verify_payment(
    req: VerifyPaymentRequest,
    order: PaymentOrder = Depends(load_owned_order),
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(max_requests=30, window_seconds=60)),
):
    """
    Submit the (paymentId, signature) proof for an order.

    Safe to repeat: once enrolled, every call returns the same 200 payload.
    """
    result = await enrollment_coordinator.resolve(db, order.order_id, req.payment_id, req.signature)
    return success_response(result.to_dict())


@router.post("/{order_id}/cancel")
async def cancel_order(
    order: PaymentOrder = Depends(load_owned_order),
    db: AsyncSession = Depends(get_db),
):
    order = await failure_handler.cancel(db, order.order_id)
    return success_response(order_store.order_to_dict(order))


@router.post("/{order_id}/fail")
async def fail_order(
    req: FailOrderRequest,
    order: PaymentOrder = Depends(load_owned_order),
    db: AsyncSession = Depends(get_db),
):
    order = await failure_handler.fail_gateway(db, order.order_id, req.reason)
    return success_response(order_store.order_to_dict(order))
