from fastapi import HTTPException, status
from functools import wraps
from typing import Callable

class DatabaseError(HTTPException):
    """Custom exception for database errors"""
    def __init__(self, detail: str = "Database operation failed"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)

class NotFoundError(HTTPException):
    """Custom exception for not found errors"""
    def __init__(self, resource: str = "Resource"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource} not found")

class ForbiddenError(HTTPException):
    """Custom exception for forbidden errors"""
    def __init__(self, detail: str = "Not authorized to access this resource"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class ValidationError(HTTPException):
    """Custom exception for validation errors"""
    def __init__(self, detail: str = "Validation failed"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class ProviderNotConfiguredError(HTTPException):
    """Payment provider credentials are missing"""
    def __init__(self, detail: str = "Payment provider not configured"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


# Domain errors raised below the HTTP layer

class WebhookVerificationError(Exception):
    """Webhook signature is missing or does not match the shared secret"""

class MalformedEventError(Exception):
    """Webhook payload cannot be parsed into an event envelope"""

class UnsupportedEventError(Exception):
    """Webhook event type is not handled by the reconciliation engine"""
    def __init__(self, event_type: str):
        super().__init__(f"Unsupported event type: {event_type}")
        self.event_type = event_type

class PaymentProviderError(Exception):
    """An outbound call to the payment provider failed"""

class UnknownPriceError(Exception):
    """A plan, price or credit package is not in the catalog"""

class ConcurrentUpdateError(Exception):
    """A compare-and-set update kept losing to concurrent writers"""


def handle_database_errors(func: Callable) -> Callable:
    """Decorator to handle database errors"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            raise
        except Exception as e:
            raise DatabaseError(f"Database operation failed: {str(e)}")
    return wrapper
