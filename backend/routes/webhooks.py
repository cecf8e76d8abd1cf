"""
Gateway webhook endpoint.

Authenticated by X-Gateway-Signature = hex(HMAC-SHA256(webhook_secret, raw body)).
Fails closed: without GATEWAY_WEBHOOK_SECRET every delivery is rejected.
"""
import json
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from domain.constants import WEBHOOK_SIGNATURE_HEADER
from domain.errors import UnauthorizedError, ValidationError
from domain.responses import success_response
from models import GatewayWebhookRequest
from services import webhook_service
from services.signature_service import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/gateway")
async def gateway_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Payment captured / failed notifications from the gateway."""
    body = await request.body()
    signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER, "")

    if not verify_webhook_signature(body, signature, settings.gateway_webhook_secret):
        raise UnauthorizedError("Invalid webhook signature")

    try:
        event = GatewayWebhookRequest.model_validate(json.loads(body))
    except (ValueError, PydanticValidationError) as e:
        logger.warning(f"Malformed webhook payload: {e}")
        raise ValidationError("invalid webhook payload", field="body")

    result = await webhook_service.process_event(db, event)
    return success_response(result)
