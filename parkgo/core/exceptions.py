"""
Custom application exceptions
"""

from typing import Optional, Dict, Any


class ParkGoException(Exception):
    """Base exception for ParkGo application"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ParkGoException):
    """Validation errors"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class AuthenticationError(ParkGoException):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_ERROR",
            status_code=401,
            details=details
        )


class AuthorizationError(ParkGoException):
    """Caller is neither the owner nor the facility owner"""

    def __init__(self, message: str = "Not authorized", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_FORBIDDEN",
            status_code=403,
            details=details
        )


class NotFoundError(ParkGoException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id {identifier} not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource}
        )


class InsufficientBalanceError(ParkGoException):
    """Balance does not cover the requested debit"""

    def __init__(self, required: int, available: Optional[int] = None):
        details = {"required": required}
        if available is not None:
            details["available"] = available
        super().__init__(
            message=f"Insufficient balance: {required} required",
            code="INSUFFICIENT_BALANCE",
            status_code=402,
            details=details
        )


class InsufficientCapacityError(ParkGoException):
    """No free slot left for the vehicle class"""

    def __init__(self, facility_id: Any, vehicle_class: str):
        super().__init__(
            message=f"No {vehicle_class} slot available at this facility",
            code="INSUFFICIENT_CAPACITY",
            status_code=409,
            details={"facility_id": str(facility_id), "vehicle_class": vehicle_class}
        )


class InvalidStateError(ParkGoException):
    """Operation attempted from a state that forbids it"""

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        code: str = "INVALID_STATE"
    ):
        details = {"current_state": current_state} if current_state else {}
        super().__init__(
            message=message,
            code=code,
            status_code=409,
            details=details
        )


class ConcurrencyError(InvalidStateError):
    """Record was modified by a concurrent unit of work"""

    def __init__(self, message: str = "Resource was modified by another process"):
        super().__init__(message=message, code="CONCURRENCY_ERROR")


class TokenError(ParkGoException):
    """Access token could not be used"""

    def __init__(self, message: str, code: str = "INVALID_TOKEN"):
        super().__init__(
            message=message,
            code=code,
            status_code=401
        )


class InvalidToken(TokenError):
    def __init__(self, message: str = "Access token is malformed or not signed by this service"):
        super().__init__(message=message, code="INVALID_TOKEN")


class ExpiredToken(TokenError):
    def __init__(self, message: str = "Access token has expired"):
        super().__init__(message=message, code="TOKEN_EXPIRED")


class WrongType(TokenError):
    def __init__(self, expected: str, actual: Optional[str]):
        super().__init__(
            message=f"Access token is for {actual or 'unknown'}, expected {expected}",
            code="WRONG_TOKEN_TYPE"
        )


class GatewayUnavailableError(ParkGoException):
    """Payment gateway timed out or failed"""

    def __init__(self, message: str = "Payment gateway is unavailable", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="GATEWAY_UNAVAILABLE",
            status_code=503,
            details=details
        )


class WebhookSignatureError(ParkGoException):
    """Gateway notification failed signature verification"""

    def __init__(self):
        super().__init__(
            message="Invalid notification signature",
            code="INVALID_SIGNATURE",
            status_code=401
        )


class RateLimitError(ParkGoException):
    """Rate limit exceeded error"""

    def __init__(self, limit: int, window: int):
        super().__init__(
            message=f"Rate limit exceeded. Max {limit} requests per {window} seconds",
            code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            details={"limit": limit, "window": window}
        )
