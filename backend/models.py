"""
Pydantic models for request validation.

Request bodies use camelCase on the wire and snake_case in Python.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiModel(BaseModel):
    """Shared base - allows construction by Python name or alias, rejects unknown keys."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


# ── Orders ──────────────────────────────────────────────────────────

class CreateOrderRequest(ApiModel):
    """POST /orders"""
    course: str = Field(
        ...,
        description="Course id to purchase",
        min_length=1,
        max_length=64,
        pattern=r"^[A-Za-z0-9_\-]+$",
    )
    amount: Optional[int] = Field(
        None,
        description="Expected price in minor units; must match the catalog price",
        gt=0,
        strict=True,
    )
    currency: Optional[str] = Field(
        None,
        description="ISO currency code; must match the course currency",
        pattern=r"^[A-Z]{3}$",
    )


class VerifyPaymentRequest(ApiModel):
    """POST /orders/{orderId}/verify - the proof returned by the checkout widget."""
    payment_id: str = Field(..., alias="paymentId", min_length=1, max_length=64)
    signature: str = Field(..., min_length=1, max_length=128)


class FailOrderRequest(ApiModel):
    """POST /orders/{orderId}/fail"""
    reason: str = Field(
        "payment failed",
        description="Gateway error description, kept for audit",
        max_length=2000,
    )


# ── Webhooks ────────────────────────────────────────────────────────

class WebhookPayment(BaseModel):
    """Payment entity inside a gateway webhook."""
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId", min_length=1, max_length=64)
    payment_id: Optional[str] = Field(None, alias="paymentId", max_length=64)
    signature: Optional[str] = Field(None, max_length=128)
    error_description: Optional[str] = Field(None, alias="errorDescription", max_length=2000)


class GatewayWebhookRequest(BaseModel):
    """
    POST /webhooks/gateway

    Extra fields from the gateway are ignored so new payload versions do not
    break delivery.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_id: str = Field(..., alias="eventId", min_length=1, max_length=128)
    event: str = Field(..., min_length=1, max_length=50)
    payment: WebhookPayment
