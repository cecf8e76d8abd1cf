"""
Domain enums for the order lifecycle.

    CREATED --(verify success)--> VERIFIED --(enrollment committed)--> ENROLLED
    CREATED --(user cancels / gateway failure)--> CANCELLED | FAILED
    CREATED --(expires_at elapsed)--> EXPIRED
    VERIFIED --(enrollment commit fails irrecoverably)--> FAILED

VERIFYING is an optional in-flight marker and behaves like CREATED.
"""

from enum import Enum


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    VERIFYING = "VERIFYING"
    VERIFIED = "VERIFIED"
    ENROLLED = "ENROLLED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


# Statuses from which a payment proof may still be accepted
OPEN_STATUSES = frozenset({OrderStatus.CREATED, OrderStatus.VERIFYING})

# Terminal statuses that can never lead to an enrollment
DEAD_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.FAILED, OrderStatus.EXPIRED})


class UserRole(str, Enum):
    STUDENT = "student"
    EDUCATOR = "educator"
    ADMIN = "admin"


STAFF_ROLES = frozenset({UserRole.EDUCATOR.value, UserRole.ADMIN.value})


class WebhookEvent(str, Enum):
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
