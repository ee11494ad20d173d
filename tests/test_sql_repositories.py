from datetime import datetime, timedelta

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from clinic_booking.application.ports.appointments_repo import AuditKind, NewAppointment
from clinic_booking.db.models import AppointmentType, Organization, Patient, PatientOrganization
from clinic_booking.infrastructure.persistence.sqlalchemy.repositories.appointments_repository_sql import (
    SqlAppointmentsRepository,
)
from clinic_booking.infrastructure.persistence.sqlalchemy.repositories.payment_config_repository_sql import (
    SqlPaymentConfigRepository,
)
from clinic_booking.infrastructure.persistence.sqlalchemy.repositories.webhook_event_repository_sql import (
    SqlWebhookEventLedger,
)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        session.add(
            Organization(
                id="org-1",
                name="Acme Clinic",
                stripe_enabled=True,
                stripe_secret_key="sk_test_1",
                stripe_publishable_key="pk_test_1",
            )
        )
        session.add(Patient(id="pat-1", first_name="Ada", last_name="Lovelace", email="ada@example.com"))
        session.add(Patient(id="pat-2", first_name="Eve", last_name="Moreau", email="eve@other-clinic.test"))
        session.add(Organization(id="org-2", name="Other Clinic"))
        session.add(PatientOrganization(patient_id="pat-1", organization_id="org-1"))
        session.add(PatientOrganization(patient_id="pat-2", organization_id="org-2"))
        session.add(
            AppointmentType(
                id="type-1",
                organization_id="org-1",
                name="Consultation",
                requires_payment=True,
                stripe_price_id="price_123",
            )
        )
        session.commit()
    return engine


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


def new_appointment():
    start = datetime.utcnow() + timedelta(days=1)
    return NewAppointment(
        title="Consultation",
        start_time=start,
        end_time=start + timedelta(minutes=45),
        appointment_type_id="type-1",
        patient_id="pat-1",
        organization_id="org-1",
    )


def test_reads_type_and_patient(session):
    repo = SqlAppointmentsRepository(session)
    appointment_type = repo.get_appointment_type("type-1")
    assert appointment_type.requires_payment is True
    assert appointment_type.stripe_price_id == "price_123"
    assert appointment_type.payment_type == "one_time"
    assert repo.get_patient("pat-1", "org-1").full_name == "Ada Lovelace"
    assert repo.get_patient("pat-2", "org-1") is None
    assert repo.get_patient("pat-2", "org-2").email == "eve@other-clinic.test"
    assert repo.get_appointment_type("missing") is None


def test_compare_and_set_only_applies_from_expected_state(session):
    repo = SqlAppointmentsRepository(session)
    appt = repo.create(new_appointment(), "scheduled", "pending")

    assert repo.compare_and_set(appt.id, ["pending"], checkout_session_id="cs_1") is True
    assert repo.get_by_checkout_session("cs_1").id == appt.id

    assert repo.compare_and_set(appt.id, ["pending"], ["scheduled"], status="confirmed", payment_status="paid") is True
    assert repo.compare_and_set(appt.id, ["pending", "failed"], status="payment_failed", payment_status="failed") is False

    current = repo.get_by_id(appt.id)
    assert (current.status, current.payment_status) == ("confirmed", "paid")
    assert current.checkout_session_id == "cs_1"


def test_compare_and_set_checks_status_too(session):
    repo = SqlAppointmentsRepository(session)
    appt = repo.create(new_appointment(), "cancelled", "pending")
    assert repo.compare_and_set(appt.id, ["pending"], ["scheduled"], status="confirmed") is False
    assert repo.get_by_id(appt.id).status == "cancelled"


def test_audit_entries_render_as_notes_in_order(session):
    repo = SqlAppointmentsRepository(session)
    appt = repo.create(new_appointment(), "scheduled", "pending")
    repo.append_audit(appt.id, AuditKind.CREATED, "Booked, awaiting payment", actor="user-1")
    repo.append_audit(appt.id, AuditKind.PAYMENT_SUCCEEDED, "Payment completed: pi_1")

    current = repo.get_by_id(appt.id)
    assert [e.kind for e in current.audit] == ["created", "payment_succeeded"]
    assert current.audit[0].actor == "user-1"
    lines = current.notes.splitlines()
    assert len(lines) == 2
    assert lines[1].endswith("Payment completed: pi_1")


def test_mark_abandoned_notified(session):
    repo = SqlAppointmentsRepository(session)
    appt = repo.create(new_appointment(), "scheduled", "pending")
    repo.mark_abandoned_notified(appt.id)
    assert repo.get_by_id(appt.id).abandoned_checkout_notified is True


def test_payment_config_round_trips_webhook_secret(session):
    repo = SqlPaymentConfigRepository(session)
    config = repo.get("org-1")
    assert config.is_configured
    assert config.webhook_secret is None
    assert "sk_test_1" not in repr(config)

    repo.set_webhook_secret("org-1", "whsec_1")
    assert repo.get("org-1").webhook_secret == "whsec_1"
    assert repo.get("org-missing") is None


def test_ledger_records_each_event_once(engine):
    with Session(engine) as first, Session(engine) as second:
        assert SqlWebhookEventLedger(first).record("evt_1", "org-1", "checkout.session.completed") is True
        # a concurrent delivery of the same event loses on the primary key
        assert SqlWebhookEventLedger(second).record("evt_1", "org-1", "checkout.session.completed") is False
        assert SqlWebhookEventLedger(second).has_processed("evt_1") is True
        assert SqlWebhookEventLedger(second).has_processed("evt_2") is False
