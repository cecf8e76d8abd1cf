"""
Custom domain exceptions for consistent error handling.

These exceptions are mapped to HTTP status codes by the global exception handler
in main.py. The error code in the response envelope is derived from the class
name (OrderNotFoundError -> "ordernotfound").
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base class for all domain-specific errors."""
    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST, details: dict | None = None):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.details = details or {}


class NotFoundError(DomainError):
    """Resource not found (404)."""
    def __init__(self, resource_type: str, identifier: str, details: dict | None = None):
        message = f"{resource_type} not found: {identifier}"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ValidationError(DomainError):
    """Validation error (400)."""
    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        if field:
            message = f"Validation error on {field}: {message}"
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class PermissionDeniedError(DomainError):
    """Permission denied (403)."""
    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class UnauthorizedError(DomainError):
    """Unauthorized access (401)."""
    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)


class ConflictError(DomainError):
    """Resource conflict (409)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details=details)


class RateLimitError(DomainError):
    """Rate limit exceeded (429)."""
    def __init__(self, message: str = "Rate limit exceeded", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_429_TOO_MANY_REQUESTS, details=details)


# ── Order lifecycle ─────────────────────────────────────────────────


class OrderNotFoundError(NotFoundError):
    """No order with this id (404)."""
    def __init__(self, order_id: str):
        super().__init__("Order", order_id, details={"orderId": order_id})


class InvalidSignatureError(DomainError):
    """Payment proof failed HMAC verification (400). The order stays open."""
    def __init__(self, order_id: str):
        super().__init__(
            "Payment signature is invalid",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"orderId": order_id},
        )


class OrderExpiredError(DomainError):
    """Order passed its expires_at without being paid (410)."""
    def __init__(self, order_id: str):
        super().__init__(
            "Order has expired; create a new order to retry",
            status_code=status.HTTP_410_GONE,
            details={"orderId": order_id, "status": "EXPIRED"},
        )


class OrderNotVerifiableError(DomainError):
    """Order is cancelled or failed and can never be enrolled (410)."""
    def __init__(self, order_id: str, order_status: str):
        super().__init__(
            f"Order is {order_status} and can no longer be verified",
            status_code=status.HTTP_410_GONE,
            details={"orderId": order_id, "status": order_status},
        )


class OrderAlreadyResolvedError(ConflictError):
    """Order already reached a state that forbids the requested transition (409)."""
    def __init__(self, order_id: str, order_status: str):
        super().__init__(
            f"Order is already {order_status}",
            details={"orderId": order_id, "status": order_status},
        )


class AlreadyEnrolledError(ConflictError):
    """The user is already enrolled in the course (409)."""
    def __init__(self, user_id: str, course_id: str):
        super().__init__(
            "Already enrolled in this course",
            details={"userId": user_id, "courseId": course_id},
        )


# ── Infrastructure ──────────────────────────────────────────────────


class GatewayError(DomainError):
    """Payment gateway rejected the request (502)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_502_BAD_GATEWAY, details=details)


class GatewayUnavailableError(DomainError):
    """Payment gateway unreachable after the retry budget (503)."""
    def __init__(self, message: str = "Payment gateway unavailable, try again shortly", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class PersistenceError(DomainError):
    """Storage failed mid-request (503). Safe to retry the same call."""
    def __init__(self, message: str = "Storage error, the request can be retried safely", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


def error_code(exc: DomainError) -> str:
    """Envelope code for a domain error: class name without 'Error', lower-cased."""
    return exc.__class__.__name__.replace("Error", "").lower()
