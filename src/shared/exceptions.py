"""Error taxonomy shared by every bounded context.

Field-level rejections use Protean's ``ValidationError`` with its
``{field: [messages]}`` shape and missing records its ``ObjectNotFoundError``.
The engine-specific errors below extend Protean's exceptions and carry the
HTTP status they map to; ``app.py`` renders all of them.
"""

from protean.exceptions import (
    InvalidOperationError,
    ObjectNotFoundError,
    ProteanException,
    ValidationError,
)

HTTP_STATUS = (
    (ValidationError, 400),
    (ObjectNotFoundError, 404),
    (InvalidOperationError, 409),
)


def error_message(exc: Exception) -> str:
    messages = getattr(exc, "messages", None)
    if isinstance(messages, dict):
        return "; ".join(f"{field}: {', '.join(str(m) for m in errors)}" for field, errors in messages.items())
    return getattr(exc, "message", None) or str(exc)


def status_for(exc: Exception) -> int:
    status = getattr(exc, "status_code", None)
    if status:
        return status
    for cls, code in HTTP_STATUS:
        if isinstance(exc, cls):
            return code
    return 500


def error_body(exc: Exception) -> dict:
    body = {"error": type(exc).__name__, "message": error_message(exc)}
    messages = getattr(exc, "messages", None)
    if isinstance(messages, dict):
        body["messages"] = messages
    return body


class DomainError(ProteanException):
    """Base class for the engine's own failures."""

    status_code = 500

    def __init__(self, message: str = "", **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class InvalidStatusTransition(ValidationError):
    """The requested order status edge is not in the allowed-edge table."""

    status_code = 409

    def __init__(self, messages: dict[str, list[str]], **context) -> None:
        super().__init__(messages)
        self.messages = messages
        self.context = context


class OutOfOrderTransition(InvalidStatusTransition):
    """A fulfilment status arrived before the order was cleared for fulfilment."""


class AuthorizationError(DomainError):
    status_code = 403


class StockError(InvalidOperationError):
    """Insufficient stock, at checkout preflight or at debit time."""

    status_code = 409

    def __init__(self, message: str, product_id: str | None = None, requested: int = 0, available: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.product_id = product_id
        self.requested = requested
        self.available = available


class SignatureVerificationError(DomainError):
    """Webhook or client signature did not match; nothing was recorded or applied."""

    status_code = 400


class GatewayError(DomainError):
    """A payment gateway call failed."""

    status_code = 502


class CarrierError(DomainError):
    """A shipping carrier call failed."""

    status_code = 502


class WebhookAuthenticationError(SignatureVerificationError):
    """Carrier webhook presented a missing or wrong API key."""

    status_code = 401


__all__ = [
    "AuthorizationError",
    "CarrierError",
    "DomainError",
    "GatewayError",
    "InvalidOperationError",
    "InvalidStatusTransition",
    "ObjectNotFoundError",
    "OutOfOrderTransition",
    "SignatureVerificationError",
    "StockError",
    "ValidationError",
    "WebhookAuthenticationError",
]
