"""
Domain errors raised by repositories and workflows.

Handlers in main.py translate these into HTTP responses; nothing below the
handler layer knows about status codes beyond the class attribute.
"""
from fastapi import status


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal server error"

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid input"


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Could not validate credentials"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Not allowed"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    message = "Already exists"


class EmptyCart(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Cart is empty"


class AlreadyProcessed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Payment already completed"


class InvalidState(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Order cannot be changed in its current state"


class PaymentGatewayError(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Payment gateway unavailable"
