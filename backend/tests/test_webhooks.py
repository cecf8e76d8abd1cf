"""
Tests for the gateway webhook endpoint.
"""
import hashlib
import hmac
import json

import pytest
from sqlalchemy import select, func

from config import settings
from db_models import Enrollment, GatewayEvent
from domain.constants import WEBHOOK_SIGNATURE_HEADER


def _signed(payload: dict, secret: str | None = None) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode()
    key = (secret if secret is not None else settings.gateway_webhook_secret).encode()
    sig = hmac.new(key, body, hashlib.sha256).hexdigest()
    return body, {WEBHOOK_SIGNATURE_HEADER: sig, "Content-Type": "application/json"}


def _captured(event_id: str, order_id: str, payment_id: str, signature: str) -> dict:
    return {
        "eventId": event_id,
        "event": "payment.captured",
        "payment": {"orderId": order_id, "paymentId": payment_id, "signature": signature},
    }


async def _open_order(client, auth_headers, user="U1") -> str:
    response = await client.post("/orders", json={"course": "C1"}, headers=auth_headers(user))
    return response.json()["data"]["orderId"]


class TestWebhookAuth:

    @pytest.mark.api
    async def test_bad_signature_rejected(self, client, course):
        body, headers = _signed({"eventId": "evt_1", "event": "payment.captured"}, secret="wrong")
        response = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert response.status_code == 401

    @pytest.mark.api
    async def test_missing_signature_rejected(self, client, course):
        response = await client.post("/webhooks/gateway", json={"eventId": "evt_1"})
        assert response.status_code == 401

    @pytest.mark.api
    async def test_fails_closed_without_secret(self, client, course, monkeypatch):
        body, headers = _signed({"eventId": "evt_1", "event": "payment.captured"}, secret="")
        monkeypatch.setattr(settings, "gateway_webhook_secret", "")
        response = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert response.status_code == 401

    @pytest.mark.api
    async def test_malformed_payload(self, client, course):
        body, headers = _signed({"event": "payment.captured"})
        response = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert response.status_code == 400


class TestPaymentCaptured:

    @pytest.mark.api
    async def test_enrolls_through_resolve(self, client, course, auth_headers, sign, session_factory):
        order_id = await _open_order(client, auth_headers)
        body, headers = _signed(_captured("evt_1", order_id, "pay_1", sign(order_id, "pay_1")))

        response = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "enrolled"
        assert data["result"]["course"]["totalEnrolled"] == 1

        async with session_factory() as db:
            event = (await db.execute(select(GatewayEvent))).scalar_one()
        assert event.event_id == "evt_1"
        assert event.outcome == "enrolled"

    @pytest.mark.api
    async def test_client_verify_and_webhook_agree(self, client, course, auth_headers, sign, session_factory):
        order_id = await _open_order(client, auth_headers)
        sig = sign(order_id, "pay_1")

        verify = await client.post(
            f"/orders/{order_id}/verify",
            json={"paymentId": "pay_1", "signature": sig},
            headers=auth_headers(),
        )
        body, headers = _signed(_captured("evt_2", order_id, "pay_1", sig))
        webhook = await client.post("/webhooks/gateway", content=body, headers=headers)

        assert webhook.json()["data"]["status"] == "replayed"
        assert webhook.json()["data"]["result"] == verify.json()["data"]

        async with session_factory() as db:
            assert await db.scalar(select(func.count(Enrollment.id))) == 1

    @pytest.mark.api
    async def test_redelivery_acknowledged_as_duplicate(self, client, course, auth_headers, sign):
        order_id = await _open_order(client, auth_headers)
        body, headers = _signed(_captured("evt_3", order_id, "pay_1", sign(order_id, "pay_1")))

        await client.post("/webhooks/gateway", content=body, headers=headers)
        again = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert again.status_code == 200
        assert again.json()["data"]["status"] == "duplicate"

    @pytest.mark.api
    async def test_cancelled_order_rejected_with_200(self, client, course, auth_headers, sign):
        order_id = await _open_order(client, auth_headers)
        await client.post(f"/orders/{order_id}/cancel", headers=auth_headers())

        body, headers = _signed(_captured("evt_4", order_id, "pay_1", sign(order_id, "pay_1")))
        response = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"] == {
            "eventId": "evt_4",
            "status": "rejected",
            "reason": "ordernotverifiable",
        }

    @pytest.mark.api
    async def test_invalid_payment_signature_is_400(self, client, course, auth_headers):
        order_id = await _open_order(client, auth_headers)
        body, headers = _signed(_captured("evt_5", order_id, "pay_1", "000000"))
        response = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalidsignature"

    @pytest.mark.api
    async def test_unknown_order_rejected_with_200(self, client, course):
        body, headers = _signed(_captured("evt_6", "order_GHOST", "pay_1", "abc"))
        response = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["reason"] == "ordernotfound"


class TestPaymentFailed:

    @pytest.mark.api
    async def test_marks_order_failed(self, client, course, auth_headers):
        order_id = await _open_order(client, auth_headers)
        body, headers = _signed({
            "eventId": "evt_7",
            "event": "payment.failed",
            "payment": {"orderId": order_id, "errorDescription": "insufficient funds"},
        })
        response = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert response.json()["data"]["status"] == "failed"

        detail = await client.get(f"/orders/{order_id}", headers=auth_headers("S1", "admin"))
        assert detail.json()["data"]["status"] == "FAILED"
        assert detail.json()["data"]["failureReason"] == "insufficient funds"

    @pytest.mark.api
    async def test_failure_after_enrollment_is_rejected(self, client, course, auth_headers, sign):
        order_id = await _open_order(client, auth_headers)
        await client.post(
            f"/orders/{order_id}/verify",
            json={"paymentId": "pay_1", "signature": sign(order_id, "pay_1")},
            headers=auth_headers(),
        )
        body, headers = _signed({
            "eventId": "evt_8",
            "event": "payment.failed",
            "payment": {"orderId": order_id},
        })
        response = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert response.json()["data"]["reason"] == "orderalreadyresolved"

    @pytest.mark.api
    async def test_unknown_event_type_ignored(self, client, course, auth_headers):
        order_id = await _open_order(client, auth_headers)
        body, headers = _signed({
            "eventId": "evt_9",
            "event": "refund.created",
            "payment": {"orderId": order_id},
        })
        response = await client.post("/webhooks/gateway", content=body, headers=headers)
        assert response.json()["data"]["status"] == "ignored"
