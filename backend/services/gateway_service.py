"""
Payment gateway client - creates gateway orders over HTTP.

Calls POST {GATEWAY_BASE_URL}/orders with basic auth (key id / key secret).
Timeouts, transport errors and 5xx responses get exactly one retry after
GATEWAY_RETRY_BACKOFF_SECONDS. 4xx responses are not retried.

In SIMULATION_MODE no network call is made; a local order_<hex> id is issued
so the rest of the flow (signatures, enrollment) can be exercised end to end.
"""
import asyncio
import logging
import secrets

import httpx

from config import settings
from domain.constants import SIMULATED_ORDER_PREFIX
from domain.errors import GatewayError, GatewayUnavailableError
from exceptions import GatewayRequestError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


def _auth() -> tuple[str, str]:
    if not settings.gateway_key_id or not settings.gateway_key_secret:
        raise GatewayError(
            "Payment gateway credentials not configured "
            "(GATEWAY_KEY_ID, GATEWAY_KEY_SECRET)"
        )
    return settings.gateway_key_id, settings.gateway_key_secret


async def _post_order(payload: dict) -> dict:
    """
    Single attempt. Raises GatewayRequestError for retryable failures and
    GatewayError for rejections.
    """
    try:
        async with httpx.AsyncClient(timeout=settings.gateway_timeout_seconds) as client:
            response = await client.post(
                f"{settings.gateway_base_url}/orders",
                json=payload,
                auth=_auth(),
            )
    except httpx.TimeoutException as e:
        raise GatewayRequestError(f"timeout: {e}")
    except httpx.TransportError as e:
        raise GatewayRequestError(f"transport error: {e}")

    if response.status_code >= 500:
        raise GatewayRequestError(
            f"gateway returned {response.status_code}", status_code=response.status_code
        )
    if response.status_code >= 400:
        logger.warning(
            f"Gateway rejected order for receipt {payload.get('receipt')}: "
            f"{response.status_code} {response.text[:200]}"
        )
        raise GatewayError(
            "Payment gateway rejected the order",
            details={"gatewayStatus": response.status_code},
        )

    try:
        body = response.json()
    except ValueError:
        raise GatewayError("Payment gateway returned a non-JSON response")
    if not isinstance(body, dict) or not body.get("id"):
        raise GatewayError("Payment gateway response is missing the order id")
    return body


async def create_gateway_order(amount: int, currency: str, receipt: str, notes: dict | None = None) -> str:
    """
    Create an order on the payment gateway.

    Args:
        amount: Minor units (paise)
        currency: ISO code, e.g. INR
        receipt: Local reference (rcpt_<hex>)
        notes: Free-form metadata echoed back by the gateway

    Returns:
        The gateway-issued order id.

    Raises:
        GatewayUnavailableError (503) after the retry budget is spent
        GatewayError (502) when the gateway rejects the request
    """
    if settings.simulation_mode:
        order_id = f"{SIMULATED_ORDER_PREFIX}{secrets.token_hex(7)}"
        logger.info(f"  [SIMULATION] Gateway order {order_id} for receipt {receipt}")
        return order_id

    payload = {
        "amount": amount,
        "currency": currency,
        "receipt": receipt,
        "notes": notes or {},
    }

    last_error: GatewayRequestError | None = None
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            body = await _post_order(payload)
            logger.info(f"Gateway order {body['id']} created for receipt {receipt}")
            return body["id"]
        except GatewayRequestError as e:
            last_error = e
            logger.warning(
                f"Gateway order attempt {attempt}/{MAX_ATTEMPTS} failed for receipt {receipt}: {e}"
            )
            if attempt < MAX_ATTEMPTS:
                await asyncio.sleep(settings.gateway_retry_backoff_seconds)

    raise GatewayUnavailableError(details={"reason": str(last_error)})
