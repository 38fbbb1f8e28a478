import hashlib
import hmac


def integrity_signature(reference: str, amount_in_cents: int, currency: str, integrity_key: str) -> str:
    """SHA-256 integrity signature the gateway expects on every charge."""
    data = f"{reference}{amount_in_cents}{currency}{integrity_key}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def event_signature(payload: str, timestamp: str, events_key: str) -> str:
    data = f"{payload}{timestamp}{events_key}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def verify_event_signature(payload: str, signature: str | None, timestamp: str | None, events_key: str) -> bool:
    if not signature or not timestamp:
        return False
    expected = event_signature(payload, timestamp, events_key)
    return hmac.compare_digest(expected, signature)
