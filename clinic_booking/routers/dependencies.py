from fastapi import Depends
from sqlmodel import Session

from ..database import get_session
from ..application.services.appointment_lifecycle_service import AppointmentLifecycleService
from ..application.services.webhook_reconciler import WebhookReconciler
from ..infrastructure.notifications.log_notification_sink import LogNotificationSink
from ..infrastructure.payments.stripe_gateway import StripeCheckoutGateway
from ..infrastructure.payments.stripe_verifier import StripeEventVerifier
from ..infrastructure.persistence.sqlalchemy.repositories.appointments_repository_sql import SqlAppointmentsRepository
from ..infrastructure.persistence.sqlalchemy.repositories.payment_config_repository_sql import SqlPaymentConfigRepository
from ..infrastructure.persistence.sqlalchemy.repositories.webhook_event_repository_sql import SqlWebhookEventLedger


def get_payment_config_repository(session: Session = Depends(get_session)) -> SqlPaymentConfigRepository:
    return SqlPaymentConfigRepository(session)


def get_checkout_gateway(session: Session = Depends(get_session)) -> StripeCheckoutGateway:
    return StripeCheckoutGateway(
        config_repo=SqlPaymentConfigRepository(session),
        appointments_repo=SqlAppointmentsRepository(session),
    )


def get_lifecycle_service(
    session: Session = Depends(get_session),
    gateway: StripeCheckoutGateway = Depends(get_checkout_gateway),
) -> AppointmentLifecycleService:
    return AppointmentLifecycleService(
        repo=SqlAppointmentsRepository(session),
        gateway=gateway,
        notifications=LogNotificationSink(),
    )


def get_webhook_reconciler(
    session: Session = Depends(get_session),
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
) -> WebhookReconciler:
    return WebhookReconciler(
        lifecycle=lifecycle,
        config_repo=SqlPaymentConfigRepository(session),
        ledger=SqlWebhookEventLedger(session),
        verifier=StripeEventVerifier(),
    )
