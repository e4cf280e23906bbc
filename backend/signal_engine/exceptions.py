"""
Domain exceptions for the signal engine.

Watchers and services raise these instead of fastapi.HTTPException so the
lifecycle engine never depends on the web layer. The exception handler in
main.py translates them into HTTP responses for the read API.

Exchange errors fall into two groups:
- transient (ExchangeUnavailableError): retry later, state unchanged
- persistent (OrderRejectedError, InvalidCredentialsError): terminal for the
  UserSignal that hit them
"""


class AppError(Exception):
    """Base application error with an HTTP-equivalent status code."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(AppError):
    """Input validation failure (400)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class ExchangeUnavailableError(AppError):
    """Exchange or price source unreachable, timed out or rate limited (503)."""

    def __init__(self, message: str = "Exchange service unavailable"):
        super().__init__(message, status_code=503)


class OrderRejectedError(AppError):
    """Exchange refused the order: invalid symbol, insufficient funds, bad size (422)."""

    def __init__(self, message: str = "Order rejected by exchange"):
        super().__init__(message, status_code=422)


class InvalidCredentialsError(AppError):
    """The account's API key or session is no longer valid (401)."""

    def __init__(self, message: str = "Exchange credentials rejected"):
        super().__init__(message, status_code=401)


class StoreUnavailableError(AppError):
    """Persistence layer unreachable (503)."""

    def __init__(self, message: str = "Store unavailable"):
        super().__init__(message, status_code=503)
