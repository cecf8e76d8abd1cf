"""
Signature service - authenticates payment proofs and webhook bodies.

Payment proof:
    signature = hex(HMAC-SHA256(key_secret, f"{order_id}|{payment_id}"))

Webhook body:
    X-Gateway-Signature = hex(HMAC-SHA256(webhook_secret, raw_body))

Both comparisons are constant-time. Malformed input yields False; only a
missing secret raises, because that is a deployment error.
"""
import hashlib
import hmac
import logging

from domain.constants import PROOF_SEPARATOR
from exceptions import SignatureConfigError

logger = logging.getLogger(__name__)


def _canonical_proof(order_id: str, payment_id: str) -> bytes:
    return f"{order_id}{PROOF_SEPARATOR}{payment_id}".encode("utf-8")


def sign_payment(order_id: str, payment_id: str, secret: str) -> str:
    """
    Compute the signature the gateway attaches to a successful payment.

    Used by simulation mode and by tests to produce genuine proofs.
    """
    if not secret:
        raise SignatureConfigError("Payment signing secret is not configured")
    return hmac.new(
        secret.encode("utf-8"),
        _canonical_proof(order_id, payment_id),
        hashlib.sha256,
    ).hexdigest()


def verify_payment_signature(order_id, payment_id, signature, secret: str) -> bool:
    """
    Check that (order_id, payment_id, signature) was issued by the gateway.

    Returns:
        True only for an exact, case-sensitive HMAC hex match. Any
        non-string or empty part, or a non-ASCII signature, returns False.

    Raises:
        SignatureConfigError if secret is empty.
    """
    if not secret:
        raise SignatureConfigError("Payment signing secret is not configured")

    for part in (order_id, payment_id, signature):
        if not isinstance(part, str) or not part:
            return False
    if PROOF_SEPARATOR in order_id or PROOF_SEPARATOR in payment_id:
        return False

    try:
        supplied = signature.encode("ascii")
    except UnicodeEncodeError:
        return False

    expected = sign_payment(order_id, payment_id, secret).encode("ascii")
    return hmac.compare_digest(expected, supplied)


def verify_webhook_signature(payload: bytes, signature: str, secret: str) -> bool:
    """
    Verify a webhook body HMAC.

    FAILS CLOSED when the secret is missing: an unconfigured webhook secret
    must never let unsigned deliveries through.
    """
    if not secret:
        logger.error(
            "GATEWAY_WEBHOOK_SECRET not configured - rejecting webhook. "
            "Set GATEWAY_WEBHOOK_SECRET in .env to accept gateway webhooks."
        )
        return False

    if not signature:
        logger.warning("Webhook received without signature header")
        return False

    try:
        supplied = signature.encode("ascii")
    except UnicodeEncodeError:
        return False

    expected = hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest().encode("ascii")

    return hmac.compare_digest(expected, supplied)
