from typing import Optional, Any


class LedgerChatError(Exception):
    """
    Base exception for the LedgerChat application.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFoundError(LedgerChatError):
    """
    Raised when a requested record (product, transaction, user...) is not found.
    """
    def __init__(self, message: str = "Resource not found", details: Optional[Any] = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)


class ValidationError(LedgerChatError):
    """
    Raised when input validation fails.
    """
    def __init__(self, message: str = "Validation error", details: Optional[Any] = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=422, details=details)


class ConflictError(LedgerChatError):
    """
    Raised when a write would violate a uniqueness or balance rule.
    """
    def __init__(self, message: str = "Conflict", code: str = "CONFLICT", details: Optional[Any] = None):
        super().__init__(message, code=code, status_code=409, details=details)


class InsufficientStockError(ConflictError):
    """
    Raised when a sale asks for more units than are in stock.
    """
    def __init__(self, product_name: str, available: int, requested: int):
        message = (
            f"Not enough stock for {product_name}. "
            f"You have {available} units, but tried to sell {requested}."
        )
        super().__init__(
            message,
            code="INSUFFICIENT_STOCK",
            details={"product": product_name, "available": available, "requested": requested}
        )
        self.available = available
        self.requested = requested


class UpstreamUnavailable(LedgerChatError):
    """
    Raised when an external service (AI provider, WhatsApp, Paystack) fails.
    """
    def __init__(self, message: str = "External service error", details: Optional[Any] = None):
        super().__init__(message, code="UPSTREAM_UNAVAILABLE", status_code=502, details=details)


class IntegrityViolation(LedgerChatError):
    """
    Raised when a webhook signature does not match its body.
    """
    def __init__(self, message: str = "Signature verification failed", details: Optional[Any] = None):
        super().__init__(message, code="INTEGRITY_VIOLATION", status_code=400, details=details)
