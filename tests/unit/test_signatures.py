import hashlib
from utils.signatures import integrity_signature, event_signature, verify_event_signature


def test_integrity_signature():
    expected = hashlib.sha256(b"ORDER-1-10006000000COPsecret").hexdigest()

    assert integrity_signature("ORDER-1-1000", 6000000, "COP", "secret") == expected


def test_event_signature_roundtrip():
    payload = '{"event":"transaction.updated"}'
    signature = event_signature(payload, "1700000000", "events_key")

    assert verify_event_signature(payload, signature, "1700000000", "events_key") is True


def test_event_signature_rejects_tampering():
    payload = '{"event":"transaction.updated"}'
    signature = event_signature(payload, "1700000000", "events_key")

    assert verify_event_signature(payload + " ", signature, "1700000000", "events_key") is False
    assert verify_event_signature(payload, signature, "1700000001", "events_key") is False
    assert verify_event_signature(payload, signature, "1700000000", "other_key") is False


def test_missing_headers_rejected():
    assert verify_event_signature("{}", None, "1700000000", "events_key") is False
    assert verify_event_signature("{}", "abc", None, "events_key") is False
