import json
from datetime import datetime, timedelta

from clinic_booking.application.errors import AuthenticityError, MalformedEventError
from clinic_booking.application.ports.appointments_repo import NewAppointment
from clinic_booking.application.ports.payment_config_repo import TenantPaymentConfig
from clinic_booking.application.services.appointment_lifecycle_service import AppointmentLifecycleService
from clinic_booking.application.services.webhook_reconciler import WebhookReconciler, WebhookStatus

from fakes import (
    ORG_ID,
    WEBHOOK_SECRET as SECRET,
    FakeApptRepo,
    FakeConfigRepo,
    FakeGateway,
    FakeLedger,
    FakeNotifications,
    FakeVerifier,
)


def make_reconciler():
    repo = FakeApptRepo()
    notifications = FakeNotifications()
    lifecycle = AppointmentLifecycleService(repo=repo, gateway=FakeGateway(), notifications=notifications)
    config_repo = FakeConfigRepo(
        TenantPaymentConfig(ORG_ID, enabled=True, secret_key="sk_test", webhook_secret=SECRET),
        TenantPaymentConfig("org-2", enabled=True, secret_key="sk_test_2", webhook_secret=SECRET),
    )
    ledger = FakeLedger()
    reconciler = WebhookReconciler(lifecycle=lifecycle, config_repo=config_repo, ledger=ledger, verifier=FakeVerifier())
    return reconciler, lifecycle, repo, ledger, notifications


def pending_appointment(lifecycle):
    start = datetime.utcnow() + timedelta(days=2)
    out = lifecycle.create(
        NewAppointment(
            title="Consultation",
            start_time=start,
            end_time=start + timedelta(hours=1),
            appointment_type_id="paid",
            patient_id="pat-1",
            organization_id=ORG_ID,
        ),
        success_url="https://clinic.test/success",
        cancel_url="https://clinic.test/cancel",
    )
    return out.appointment_id


def event(event_type, obj, event_id="evt_1"):
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode()


def completed_session(appointment_id, org_id=ORG_ID, payment_status="paid"):
    return {
        "id": "cs_test_1",
        "object": "checkout.session",
        "payment_status": payment_status,
        "payment_intent": "pi_123",
        "amount_total": 5000,
        "currency": "eur",
        "metadata": {"organizationId": org_id, "appointmentId": appointment_id},
    }


def test_checkout_completed_confirms_and_redelivery_is_duplicate():
    reconciler, lifecycle, repo, ledger, notifications = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    body = event("checkout.session.completed", completed_session(appointment_id))

    first = reconciler.handle(ORG_ID, body, "valid")
    second = reconciler.handle(ORG_ID, body, "valid")

    assert first.status == WebhookStatus.PROCESSED
    assert second.status == WebhookStatus.DUPLICATE
    assert second.acknowledged
    appt = repo.get_by_id(appointment_id)
    assert (appt.status, appt.payment_status) == ("confirmed", "paid")
    assert appt.payment_intent_id == "pi_123"
    assert appt.payment_amount == 5000
    assert notifications.names().count("appointment_confirmed") == 1
    assert "evt_1" in ledger.events


def test_payment_intent_succeeded_after_checkout_is_a_no_op():
    reconciler, lifecycle, repo, _, notifications = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    reconciler.handle(ORG_ID, event("checkout.session.completed", completed_session(appointment_id)), "valid")
    intent = {
        "id": "pi_123",
        "amount_received": 5000,
        "currency": "eur",
        "metadata": {"organizationId": ORG_ID, "appointmentId": appointment_id},
    }
    out = reconciler.handle(ORG_ID, event("payment_intent.succeeded", intent, "evt_2"), "valid")
    assert out.status == WebhookStatus.PROCESSED
    assert notifications.names().count("appointment_confirmed") == 1


def test_missing_signature_is_rejected():
    reconciler, lifecycle, _, ledger, _ = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    out = reconciler.handle(ORG_ID, event("checkout.session.completed", completed_session(appointment_id)), None)
    assert out.status == WebhookStatus.REJECTED
    assert isinstance(out.error, AuthenticityError)
    assert ledger.events == {}


def test_invalid_signature_changes_nothing():
    reconciler, lifecycle, repo, ledger, _ = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    out = reconciler.handle(ORG_ID, event("checkout.session.completed", completed_session(appointment_id)), "forged")
    assert out.status == WebhookStatus.REJECTED
    assert out.error.kind == "authenticity"
    assert repo.get_by_id(appointment_id).payment_status == "pending"
    assert ledger.events == {}


def test_tenant_without_webhook_secret_is_rejected():
    reconciler, _, _, _, _ = make_reconciler()
    out = reconciler.handle("org-unknown", event("checkout.session.completed", {}), "valid")
    assert out.status == WebhookStatus.REJECTED


def test_malformed_body_is_rejected():
    reconciler, _, _, _, _ = make_reconciler()
    out = reconciler.handle(ORG_ID, b"{not json", "valid")
    assert out.status == WebhookStatus.REJECTED
    assert isinstance(out.error, MalformedEventError)


def test_event_without_object_is_malformed():
    reconciler, _, _, _, _ = make_reconciler()
    body = json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {}}).encode()
    out = reconciler.handle(ORG_ID, body, "valid")
    assert out.error.kind == "malformed"


def test_unknown_appointment_requests_redelivery_without_recording():
    reconciler, _, _, ledger, _ = make_reconciler()
    out = reconciler.handle(ORG_ID, event("checkout.session.completed", completed_session("missing")), "valid")
    assert out.status == WebhookStatus.RETRY
    assert not out.acknowledged
    assert ledger.events == {}


def test_event_for_another_tenant_is_ignored():
    reconciler, lifecycle, repo, ledger, _ = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    # signed for org-2 but claiming an org-1 appointment
    out = reconciler.handle("org-2", event("checkout.session.completed", completed_session(appointment_id)), "valid")
    assert out.status == WebhookStatus.IGNORED
    assert repo.get_by_id(appointment_id).payment_status == "pending"

    out = reconciler.handle(
        "org-2", event("checkout.session.completed", completed_session(appointment_id, org_id="org-2"), "evt_2"), "valid"
    )
    assert out.status == WebhookStatus.IGNORED
    assert repo.get_by_id(appointment_id).payment_status == "pending"
    assert set(ledger.events) == {"evt_1", "evt_2"}


def test_payment_failed_marks_appointment():
    reconciler, lifecycle, repo, _, notifications = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    intent = {
        "id": "pi_9",
        "last_payment_error": {"message": "Your card was declined."},
        "metadata": {"organizationId": ORG_ID, "appointmentId": appointment_id},
    }
    out = reconciler.handle(ORG_ID, event("payment_intent.payment_failed", intent), "valid")
    assert out.status == WebhookStatus.PROCESSED
    appt = repo.get_by_id(appointment_id)
    assert (appt.status, appt.payment_status) == ("payment_failed", "failed")
    assert "Your card was declined." in appt.notes
    assert notifications.names()[-1] == "payment_failed"


def test_unpaid_checkout_completion_waits_for_async_payment():
    reconciler, lifecycle, repo, ledger, _ = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    body = event("checkout.session.completed", completed_session(appointment_id, payment_status="unpaid"))
    out = reconciler.handle(ORG_ID, body, "valid")
    assert out.status == WebhookStatus.IGNORED
    assert repo.get_by_id(appointment_id).payment_status == "pending"

    async_body = event("checkout.session.async_payment_succeeded", completed_session(appointment_id), "evt_2")
    assert reconciler.handle(ORG_ID, async_body, "valid").status == WebhookStatus.PROCESSED
    assert repo.get_by_id(appointment_id).payment_status == "paid"


def test_expired_session_is_audited_only():
    reconciler, lifecycle, repo, _, _ = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    session = completed_session(appointment_id, payment_status="unpaid")
    out = reconciler.handle(ORG_ID, event("checkout.session.expired", session), "valid")
    assert out.status == WebhookStatus.PROCESSED
    appt = repo.get_by_id(appointment_id)
    assert (appt.status, appt.payment_status) == ("scheduled", "pending")
    assert "expired without payment" in appt.notes


def test_unhandled_event_type_is_acknowledged():
    reconciler, _, _, ledger, _ = make_reconciler()
    out = reconciler.handle(ORG_ID, event("customer.created", {"id": "cus_1"}), "valid")
    assert out.status == WebhookStatus.IGNORED
    assert out.acknowledged
    assert "evt_1" in ledger.events


def test_subscription_invoice_confirms_appointment():
    reconciler, lifecycle, repo, _, _ = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    invoice = {
        "id": "in_1",
        "subscription": "sub_1",
        "subscription_details": {"metadata": {"organizationId": ORG_ID, "appointmentId": appointment_id}},
    }
    out = reconciler.handle(ORG_ID, event("invoice.payment_succeeded", invoice), "valid")
    assert out.status == WebhookStatus.PROCESSED
    appt = repo.get_by_id(appointment_id)
    assert (appt.status, appt.payment_status) == ("confirmed", "paid")
    assert appt.subscription_id == "sub_1"


def test_disabled_tenant_still_reconciles_open_checkouts():
    reconciler, lifecycle, repo, _, notifications = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    reconciler.config_repo.get(ORG_ID).enabled = False
    out = reconciler.handle(ORG_ID, event("checkout.session.completed", completed_session(appointment_id)), "valid")
    assert out.status == WebhookStatus.PROCESSED
    appt = repo.get_by_id(appointment_id)
    assert (appt.status, appt.payment_status) == ("confirmed", "paid")
    assert notifications.names().count("appointment_confirmed") == 1


def subscription(appointment_id, state):
    return {
        "id": "sub_1",
        "status": state,
        "metadata": {"organizationId": ORG_ID, "appointmentId": appointment_id},
    }


def test_renewal_failure_moves_paid_subscription_to_failed():
    reconciler, lifecycle, repo, _, notifications = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    paid = {
        "id": "in_1",
        "subscription": "sub_1",
        "subscription_details": {"metadata": {"organizationId": ORG_ID, "appointmentId": appointment_id}},
    }
    reconciler.handle(ORG_ID, event("invoice.payment_succeeded", paid), "valid")
    failed = dict(paid, id="in_2")
    out = reconciler.handle(ORG_ID, event("invoice.payment_failed", failed, "evt_2"), "valid")
    assert out.status == WebhookStatus.PROCESSED
    appt = repo.get_by_id(appointment_id)
    assert (appt.status, appt.payment_status) == ("payment_failed", "failed")
    assert "Subscription payment failed. Invoice: in_2" in appt.notes
    assert notifications.names()[-1] == "payment_failed"


def test_subscription_updated_follows_processor_status():
    reconciler, lifecycle, repo, _, _ = make_reconciler()
    appointment_id = pending_appointment(lifecycle)

    out = reconciler.handle(ORG_ID, event("customer.subscription.updated", subscription(appointment_id, "active")), "valid")
    assert out.status == WebhookStatus.PROCESSED
    appt = repo.get_by_id(appointment_id)
    assert (appt.status, appt.payment_status) == ("confirmed", "paid")
    assert appt.subscription_id == "sub_1"

    body = event("customer.subscription.updated", subscription(appointment_id, "past_due"), "evt_2")
    assert reconciler.handle(ORG_ID, body, "valid").status == WebhookStatus.PROCESSED
    appt = repo.get_by_id(appointment_id)
    assert (appt.status, appt.payment_status) == ("payment_failed", "failed")
    assert "Subscription sub_1 is past_due" in appt.notes


def test_subscription_deleted_is_audited_only():
    reconciler, lifecycle, repo, _, _ = make_reconciler()
    appointment_id = pending_appointment(lifecycle)
    out = reconciler.handle(ORG_ID, event("customer.subscription.deleted", subscription(appointment_id, "canceled")), "valid")
    assert out.status == WebhookStatus.PROCESSED
    appt = repo.get_by_id(appointment_id)
    assert (appt.status, appt.payment_status) == ("scheduled", "pending")
    assert "Subscription sub_1 ended" in appt.notes


class RacingLedger(FakeLedger):
    """Another delivery of the same event records it first."""

    def record(self, event_id, organization_id, event_type):
        return False


def test_concurrent_delivery_leaves_notifications_to_the_winner():
    reconciler, lifecycle, repo, _, notifications = make_reconciler()
    reconciler.ledger = RacingLedger()
    appointment_id = pending_appointment(lifecycle)
    out = reconciler.handle(ORG_ID, event("checkout.session.completed", completed_session(appointment_id)), "valid")
    assert out.status == WebhookStatus.DUPLICATE
    assert out.acknowledged
    assert repo.get_by_id(appointment_id).payment_status == "paid"
    assert "appointment_confirmed" not in notifications.names()
