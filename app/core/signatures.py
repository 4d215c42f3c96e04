"""HMAC-SHA256 evidence checks for checkout callbacks and gateway webhooks."""
import hashlib
import hmac


def hmac_hex(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def constant_time_equals(provided: str | None, expected: str | None) -> bool:
    """Timing-safe compare; empty values never match."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def callback_signature(secret: str, order_id: str, payment_id: str) -> str:
    return hmac_hex(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def verify_callback_signature(secret: str, order_id: str, payment_id: str, signature: str | None) -> bool:
    if not secret:
        return False
    return constant_time_equals(signature, callback_signature(secret, order_id, payment_id))


def verify_webhook_signature(secret: str, raw_body: bytes, signature: str | None) -> bool:
    """Signature is computed over the raw body bytes, never a re-serialised JSON."""
    if not secret:
        return False
    return constant_time_equals(signature, hmac_hex(secret, raw_body))
