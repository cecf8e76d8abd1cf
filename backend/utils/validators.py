"""
Input validation utilities for the enrollment service.

Provides reusable validators for gateway ids, course ids and currencies.
"""
import re

from fastapi import Path

from domain.errors import ValidationError

# Gateway-issued ids (order_*, pay_*) and local course ids share this shape.
_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def validate_identifier(value: str, field: str) -> str:
    """
    Validate an opaque identifier.

    Raises:
        ValidationError(400) if the identifier is empty or malformed
    """
    if not value:
        raise ValidationError("is required", field=field)
    if not _ID_RE.match(value):
        raise ValidationError(
            "must be 1-64 characters of letters, digits, '_' or '-'",
            field=field,
        )
    return value


def validate_currency(currency: str) -> str:
    """Validate an ISO-4217 style currency code (upper-case, 3 letters)."""
    if not currency or not _CURRENCY_RE.match(currency):
        raise ValidationError(f"unsupported currency code: {currency!r}", field="currency")
    return currency


def validate_amount(amount: int) -> int:
    """Amounts are integer minor units (paise, cents) and must be positive."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("must be a positive integer in minor units", field="amount")
    return amount


def validated_order_id(order_id: str = Path(..., description="Gateway order id")) -> str:
    """FastAPI dependency for validating order id path parameters."""
    return validate_identifier(order_id, "orderId")


def validated_course_id(course_id: str = Path(..., description="Course id")) -> str:
    """FastAPI dependency for validating course id path parameters."""
    return validate_identifier(course_id, "courseId")
