"""Domain-specific exceptions"""

from typing import List, Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input is malformed or violates a business rule"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class AuthorizationError(DomainException):
    """Caller is not allowed to act on this resource"""

    pass


class NotFoundError(DomainException):
    """Booking, listing or cancellation request does not exist"""

    pass


class ConflictError(DomainException):
    """Duplicate active request, or request no longer in the expected status"""

    pass


class GatewayError(DomainException):
    """Payment gateway returned an error or is unavailable"""

    pass


class NotificationError(DomainException):
    """Notification could not be delivered"""

    pass
