"""
shared/utils/errors.py
Typed domain failures raised by the matching, messaging and tutor services.
The app-level exception handler in main.py renders them as ErrorResponse.
"""

from fastapi import status


class DomainError(Exception):
    """Base class for expected, user-visible failures."""

    code: str = "DOMAIN_ERROR"
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ForbiddenError(DomainError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized"


class SelfTargetError(DomainError):
    code = "SELF_TARGET"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "You cannot target yourself"


class NoEligibleTutorError(DomainError):
    code = "NO_ELIGIBLE_TUTOR"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "No tutor available for this slot"
