import json
import logging
from datetime import datetime

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from clinic_booking import auth
from clinic_booking.application.ports.appointments_repo import AppointmentDto
from clinic_booking.infrastructure.notifications.log_notification_sink import LogNotificationSink


@pytest.fixture
def secret(monkeypatch):
    monkeypatch.setattr(auth.settings, "SECRET_KEY", "clinic-booking-test-secret-0123456789")
    return "clinic-booking-test-secret-0123456789"


def bearer(claims, key):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=jwt.encode(claims, key, algorithm="HS256"))


def test_principal_carries_user_and_org(secret):
    principal = auth.get_current_principal(bearer({"sub": "user-1", "org": "org-1"}, secret))
    assert principal == auth.Principal(user_id="user-1", organization_id="org-1")


def test_token_signed_with_other_key_is_rejected(secret):
    with pytest.raises(HTTPException) as exc:
        auth.get_current_principal(bearer({"sub": "user-1", "org": "org-1"}, "some-other-signing-key-0123456789abcdef"))
    assert exc.value.status_code == 401


def test_token_without_org_is_forbidden(secret):
    with pytest.raises(HTTPException) as exc:
        auth.get_current_principal(bearer({"sub": "user-1"}, secret))
    assert exc.value.status_code == 403


def test_default_secret_never_authenticates():
    assert auth.decode_jwt_token(jwt.encode({"sub": "u"}, "change-me-in-prod", algorithm="HS256")) is None


def test_log_sink_emits_structured_entry(caplog):
    now = datetime.utcnow()
    appt = AppointmentDto(
        id="appt-1",
        organization_id="org-1",
        appointment_type_id="paid",
        patient_id="pat-1",
        title="Consultation",
        start_time=now,
        end_time=now,
        status="cancelled",
        payment_status="refunded",
        created_at=now,
        updated_at=now,
    )
    with caplog.at_level(logging.INFO):
        LogNotificationSink().appointment_cancelled(appt, refunded=True)
    message = caplog.records[-1].getMessage()
    assert message.startswith("NOTIFY: ")
    entry = json.loads(message[len("NOTIFY: "):])
    assert entry["template"] == "appointment_cancelled"
    assert entry["refunded"] is True
    assert entry["appointment_id"] == "appt-1"
