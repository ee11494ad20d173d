import hashlib
import hmac
import json
import time

import pytest

from clinic_booking.application.errors import AuthenticityError, MalformedEventError
from clinic_booking.infrastructure.payments.stripe_verifier import StripeEventVerifier

SECRET = "whsec_test_secret"


def sign(payload: str, secret: str = SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_valid_signature_returns_event():
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {}}})
    event = StripeEventVerifier(tolerance=300).verify(payload.encode(), sign(payload), SECRET)
    assert event["id"] == "evt_1"


def test_wrong_secret_is_rejected():
    payload = json.dumps({"id": "evt_1"})
    with pytest.raises(AuthenticityError):
        StripeEventVerifier(tolerance=300).verify(payload.encode(), sign(payload, "whsec_other"), SECRET)


def test_tampered_body_is_rejected():
    payload = json.dumps({"id": "evt_1", "amount": 100})
    header = sign(payload)
    with pytest.raises(AuthenticityError):
        StripeEventVerifier(tolerance=300).verify(payload.replace("100", "1").encode(), header, SECRET)


def test_stale_timestamp_is_rejected():
    payload = json.dumps({"id": "evt_1"})
    header = sign(payload, timestamp=int(time.time()) - 3600)
    with pytest.raises(AuthenticityError):
        StripeEventVerifier(tolerance=300).verify(payload.encode(), header, SECRET)


def test_signed_garbage_is_malformed():
    payload = "not json"
    with pytest.raises(MalformedEventError):
        StripeEventVerifier(tolerance=300).verify(payload.encode(), sign(payload), SECRET)


def test_non_utf8_body_is_malformed():
    with pytest.raises(MalformedEventError):
        StripeEventVerifier(tolerance=300).verify(b"\xff\xfe", "t=1,v1=abc", SECRET)
