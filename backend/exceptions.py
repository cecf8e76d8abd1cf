"""
Internal exception classes that never reach an HTTP client directly.
"""


class SignatureConfigError(Exception):
    """Raised when the payment signing secret is not configured."""
    pass


class GatewayRequestError(Exception):
    """Raised when a call to the payment gateway fails at the transport level or with a 5xx."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EnrollmentConflict(Exception):
    """Raised when the (user, course) uniqueness constraint rejects an enrollment insert."""

    def __init__(self, user_id: str, course_id: str):
        super().__init__(f"Enrollment already exists for user={user_id} course={course_id}")
        self.user_id = user_id
        self.course_id = course_id
