"""
Tests for the background sweeper: expiry and re-drive of stuck VERIFIED orders.
"""
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from config import settings
from db_models import PaymentOrder
from domain.enums import OrderStatus
from services import order_manager, order_store, sweeper_service
from utils.timeutils import utcnow


async def _stuck_verified(db, user_id="U1", minutes_ago=10) -> str:
    """An order that crashed between verification and enrollment."""
    result = await order_manager.create_order(db, user_id=user_id, course_id="C1")
    order_id = result["orderId"]
    await order_store.compare_and_set_status(
        db, order_id,
        expected=[OrderStatus.CREATED], new_status=OrderStatus.VERIFIED,
        payment_id="pay_1", signature="sig",
        verified_at=utcnow() - timedelta(minutes=minutes_ago),
    )
    await db.commit()
    return order_id


class TestReconcileVerified:

    @pytest.mark.unit
    async def test_resumes_stuck_order(self, db_session, course):
        order_id = await _stuck_verified(db_session)

        result = await sweeper_service.reconcile_verified_orders(db_session)
        assert result == {"resumed": 1, "retried": 0, "failed": 0}

        order = await order_store.get_order(db_session, order_id)
        assert order.status == OrderStatus.ENROLLED.value
        assert order.enrollment_id is not None

    @pytest.mark.unit
    async def test_recent_verified_left_alone(self, db_session, course):
        order_id = await _stuck_verified(db_session, minutes_ago=0)

        result = await sweeper_service.reconcile_verified_orders(db_session)
        assert result["resumed"] == 0
        assert (await order_store.get_order(db_session, order_id)).status == OrderStatus.VERIFIED.value

    @pytest.mark.unit
    async def test_failed_redrive_counts_attempt(self, db_session, course):
        order_id = await _stuck_verified(db_session)

        boom = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("locked")))
        with patch("services.enrollment_store.insert_enrollment", boom):
            result = await sweeper_service.reconcile_verified_orders(db_session)

        assert result == {"resumed": 0, "retried": 1, "failed": 0}
        order = await order_store.get_order(db_session, order_id)
        assert order.status == OrderStatus.VERIFIED.value
        assert order.resume_attempts == 1
        assert "resume failed" in order.failure_reason

    @pytest.mark.unit
    async def test_gives_up_after_max_attempts(self, db_session, course, monkeypatch):
        monkeypatch.setattr(settings, "max_resume_attempts", 2)
        order_id = await _stuck_verified(db_session)
        await db_session.execute(
            update(PaymentOrder).where(PaymentOrder.order_id == order_id).values(resume_attempts=1)
        )
        await db_session.commit()

        boom = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("locked")))
        with patch("services.enrollment_store.insert_enrollment", boom):
            result = await sweeper_service.reconcile_verified_orders(db_session)

        assert result["failed"] == 1
        order = await order_store.get_order(db_session, order_id)
        assert order.status == OrderStatus.FAILED.value
        assert order.needs_reconciliation is True


class TestSweeperLifecycle:

    @pytest.mark.unit
    async def test_start_stop_status(self, monkeypatch):
        monkeypatch.setattr(settings, "sweep_interval_seconds", 3600)
        await sweeper_service.start()
        try:
            status = sweeper_service.get_status()
            assert status["running"] is True
            assert status["intervalSeconds"] == 3600
        finally:
            await sweeper_service.stop()
        assert sweeper_service.get_status()["running"] is False
