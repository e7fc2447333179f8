"""HMAC-SHA256 signatures used by the payment gateway."""

import hashlib
import hmac


def compute_signature(secret: str, message: bytes | str) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, message: bytes | str, signature: str | None) -> bool:
    """Constant-time comparison of ``signature`` with the expected HMAC."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, message), signature)


def checkout_signature_message(gateway_order_id: str, gateway_payment_id: str) -> str:
    """Message the gateway signs when the client confirms a payment."""
    return f"{gateway_order_id}|{gateway_payment_id}"
