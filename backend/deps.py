"""
Shared FastAPI dependencies.

Routers import DB session, auth guards and pagination from here.
"""

from __future__ import annotations

from typing import TypedDict

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import PaymentOrder
from domain.errors import OrderNotFoundError, PermissionDeniedError
from middleware.auth import CurrentUser, require_user, require_staff
from services import order_store
from utils.validators import validated_order_id

__all__ = [
    "Pagination",
    "pagination_params",
    "get_db",
    "CurrentUser",
    "require_user",
    "require_staff",
    "load_accessible_order",
    "load_owned_order",
]


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}


async def load_accessible_order(
    order_id: str = Depends(validated_order_id),
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentOrder:
    """
    Load `{order_id}` and check the caller may act on it.

    Owners may act on their own orders; staff may read any order.
    """
    order = await order_store.get_order(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    if order.user_id != user.user_id and not user.is_staff:
        raise PermissionDeniedError("This order belongs to another user.")
    return order


async def load_owned_order(
    order: PaymentOrder = Depends(load_accessible_order),
    user: CurrentUser = Depends(require_user),
) -> PaymentOrder:
    """Like load_accessible_order, but only the owner may change an order."""
    if order.user_id != user.user_id:
        raise PermissionDeniedError("Only the order owner can do this.")
    return order
