import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..errors import (
    AuthenticityError,
    BookingError,
    ConflictError,
    MalformedEventError,
    NotFoundError,
)
from ..ports.appointments_repo import AuditKind
from ..ports.event_verifier import EventVerifier
from ..ports.payment_config_repo import PaymentConfigRepository
from ..ports.webhook_event_ledger import WebhookEventLedger
from .appointment_lifecycle_service import AppointmentLifecycleService, TransitionResult

logger = logging.getLogger(__name__)


class WebhookStatus:
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    RETRY = "retry"
    REJECTED = "rejected"


SUBSCRIPTION_FAILED_STATES = ("past_due", "unpaid", "incomplete_expired")
CHECKOUT_PAID_STATES = ("paid", "no_payment_required")


@dataclass
class WebhookOutcome:
    status: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    error: Optional[BookingError] = None

    @property
    def acknowledged(self) -> bool:
        return self.status in (WebhookStatus.PROCESSED, WebhookStatus.DUPLICATE, WebhookStatus.IGNORED)


def _object_id(value: Any) -> Optional[str]:
    """Stripe sends either an id or an expanded object for references."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _invoice_subscription(invoice: Dict[str, Any]) -> tuple:
    # Older API versions put these at the top level, newer ones under parent
    details = invoice.get("subscription_details") or {}
    parent = (invoice.get("parent") or {}).get("subscription_details") or {}
    metadata = details.get("metadata") or parent.get("metadata") or invoice.get("metadata") or {}
    subscription_id = _object_id(invoice.get("subscription")) or _object_id(parent.get("subscription"))
    return metadata, subscription_id


@dataclass
class WebhookReconciler:
    """Applies signed processor events to local appointments at most once."""

    lifecycle: AppointmentLifecycleService
    config_repo: PaymentConfigRepository
    ledger: WebhookEventLedger
    verifier: EventVerifier

    def handle(self, organization_id: str, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        if not signature:
            return self._reject(AuthenticityError("No Stripe signature found"))

        config = self.config_repo.get(organization_id)
        # Disabled tenants still reconcile checkouts that were already open
        if not config or not config.webhook_secret:
            return self._reject(AuthenticityError("Webhooks are not configured for this organization"))

        try:
            event = self.verifier.verify(payload, signature, config.webhook_secret)
        except (AuthenticityError, MalformedEventError) as e:
            logger.warning(f"Webhook rejected for org {organization_id}: {e.message}")
            return self._reject(e)

        event_id = event.get("id")
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object")
        if not event_id or not event_type or not isinstance(obj, dict):
            return self._reject(MalformedEventError("Event envelope is missing id, type or data.object"))

        if self.ledger.has_processed(event_id):
            logger.info(f"Duplicate webhook event {event_id} ({event_type}) for org {organization_id}")
            return WebhookOutcome(WebhookStatus.DUPLICATE, event_id, event_type)

        logger.info(f"Processing webhook event: {event_type} ({event_id}) for organization: {organization_id}")
        handler = self._handlers().get(event_type)
        result = handler(organization_id, obj) if handler else None

        if result is not None and isinstance(result.error, NotFoundError):
            # Probably delivered before the booking commit; ask for redelivery
            logger.warning(f"Appointment {result.appointment_id} not found for event {event_id}; requesting redelivery")
            return WebhookOutcome(WebhookStatus.RETRY, event_id, event_type, result.error)

        if not self.ledger.record(event_id, organization_id, event_type):
            return WebhookOutcome(WebhookStatus.DUPLICATE, event_id, event_type)

        if result is None:
            if handler is None:
                logger.info(f"Unhandled event type: {event_type} for org: {organization_id}")
            return WebhookOutcome(WebhookStatus.IGNORED, event_id, event_type)
        if result.error is not None:
            logger.info(f"Event {event_id} acknowledged without effect: {result.error.message}")
            return WebhookOutcome(WebhookStatus.IGNORED, event_id, event_type, result.error)

        self.lifecycle.send_notifications(result)
        return WebhookOutcome(WebhookStatus.PROCESSED, event_id, event_type)

    def _handlers(self):
        return {
            "checkout.session.completed": self._checkout_completed,
            "checkout.session.async_payment_succeeded": self._checkout_async_succeeded,
            "checkout.session.async_payment_failed": self._checkout_async_failed,
            "checkout.session.expired": self._checkout_expired,
            "payment_intent.succeeded": self._payment_intent_succeeded,
            "payment_intent.payment_failed": self._payment_intent_failed,
            "invoice.payment_succeeded": self._invoice_succeeded,
            "invoice.payment_failed": self._invoice_failed,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
        }

    def _reject(self, error: BookingError) -> WebhookOutcome:
        return WebhookOutcome(WebhookStatus.REJECTED, error=error)

    def _appointment_for(self, organization_id: str, metadata: Optional[Dict[str, Any]]) -> Optional[str]:
        metadata = metadata or {}
        appointment_id = metadata.get("appointmentId")
        if not appointment_id:
            logger.info("No appointment ID found in event metadata")
            return None
        if metadata.get("organizationId") != organization_id:
            logger.warning(f"Event for appointment {appointment_id} does not belong to org {organization_id}")
            return None
        return appointment_id

    def _owned(self, organization_id: str, appointment_id: str) -> Optional[TransitionResult]:
        """A not-found result for missing rows, None when the row is this tenant's."""
        appt = self.lifecycle.get(appointment_id)
        if appt is None:
            return TransitionResult(appointment_id, error=NotFoundError("Appointment not found"))
        if appt.organization_id != organization_id:
            logger.warning(f"Appointment {appointment_id} belongs to another organization")
            return TransitionResult(appointment_id, error=ConflictError("Appointment belongs to another organization"))
        return None

    # -- checkout sessions ------------------------------------------------
    def _checkout_completed(self, organization_id: str, session: Dict[str, Any]) -> Optional[TransitionResult]:
        if session.get("payment_status") not in CHECKOUT_PAID_STATES:
            logger.info(f"Checkout session {session.get('id')} completed, awaiting asynchronous payment")
            return None
        return self._checkout_async_succeeded(organization_id, session)

    def _checkout_async_succeeded(self, organization_id: str, session: Dict[str, Any]) -> Optional[TransitionResult]:
        appointment_id = self._appointment_for(organization_id, session.get("metadata"))
        if not appointment_id:
            return None
        return self._owned(organization_id, appointment_id) or self.lifecycle.confirm_paid(
            appointment_id,
            payment_intent_id=_object_id(session.get("payment_intent")),
            amount=session.get("amount_total"),
            currency=session.get("currency"),
            session_id=session.get("id"),
            subscription_id=_object_id(session.get("subscription")),
            notify=False,
        )

    def _checkout_async_failed(self, organization_id: str, session: Dict[str, Any]) -> Optional[TransitionResult]:
        appointment_id = self._appointment_for(organization_id, session.get("metadata"))
        if not appointment_id:
            return None
        return self._owned(organization_id, appointment_id) or self.lifecycle.mark_payment_failed(
            appointment_id,
            reason=f"Asynchronous payment failed for checkout session {session.get('id')}",
            payment_intent_id=_object_id(session.get("payment_intent")),
            notify=False,
        )

    def _checkout_expired(self, organization_id: str, session: Dict[str, Any]) -> Optional[TransitionResult]:
        appointment_id = self._appointment_for(organization_id, session.get("metadata"))
        if not appointment_id:
            return None
        return self._owned(organization_id, appointment_id) or self.lifecycle.record_session_expired(
            appointment_id, session.get("id")
        )

    # -- payment intents --------------------------------------------------
    def _payment_intent_succeeded(self, organization_id: str, intent: Dict[str, Any]) -> Optional[TransitionResult]:
        appointment_id = self._appointment_for(organization_id, intent.get("metadata"))
        if not appointment_id:
            return None
        return self._owned(organization_id, appointment_id) or self.lifecycle.confirm_paid(
            appointment_id,
            payment_intent_id=intent.get("id"),
            amount=intent.get("amount_received") or intent.get("amount"),
            currency=intent.get("currency"),
            notify=False,
        )

    def _payment_intent_failed(self, organization_id: str, intent: Dict[str, Any]) -> Optional[TransitionResult]:
        appointment_id = self._appointment_for(organization_id, intent.get("metadata"))
        if not appointment_id:
            return None
        error = intent.get("last_payment_error") or {}
        reason = error.get("message") or f"Stripe payment intent {intent.get('id')} failed"
        return self._owned(organization_id, appointment_id) or self.lifecycle.mark_payment_failed(
            appointment_id,
            reason=reason,
            payment_intent_id=intent.get("id"),
            notify=False,
        )

    # -- subscriptions ----------------------------------------------------
    def _invoice_succeeded(self, organization_id: str, invoice: Dict[str, Any]) -> Optional[TransitionResult]:
        return self._invoice(organization_id, invoice, paid=True)

    def _invoice_failed(self, organization_id: str, invoice: Dict[str, Any]) -> Optional[TransitionResult]:
        return self._invoice(organization_id, invoice, paid=False)

    def _invoice(self, organization_id: str, invoice: Dict[str, Any], paid: bool) -> Optional[TransitionResult]:
        metadata, subscription_id = _invoice_subscription(invoice)
        appointment_id = self._appointment_for(organization_id, metadata)
        if not appointment_id:
            return None
        outcome = "succeeded" if paid else "failed"
        return self._owned(organization_id, appointment_id) or self.lifecycle.apply_subscription_status(
            appointment_id,
            subscription_id=subscription_id,
            paid=paid,
            detail=f"Subscription payment {outcome}. Invoice: {invoice.get('id')}",
            notify=False,
        )

    def _subscription_updated(self, organization_id: str, subscription: Dict[str, Any]) -> Optional[TransitionResult]:
        appointment_id = self._appointment_for(organization_id, subscription.get("metadata"))
        if not appointment_id:
            return None
        state = subscription.get("status")
        if state == "active":
            paid = True
        elif state in SUBSCRIPTION_FAILED_STATES:
            paid = False
        else:
            return None
        return self._owned(organization_id, appointment_id) or self.lifecycle.apply_subscription_status(
            appointment_id,
            subscription_id=subscription.get("id"),
            paid=paid,
            detail=f"Subscription {subscription.get('id')} is {state}",
            notify=False,
        )

    def _subscription_deleted(self, organization_id: str, subscription: Dict[str, Any]) -> Optional[TransitionResult]:
        appointment_id = self._appointment_for(organization_id, subscription.get("metadata"))
        if not appointment_id:
            return None
        return self._owned(organization_id, appointment_id) or self.lifecycle.record_event(
            appointment_id,
            AuditKind.SUBSCRIPTION,
            f"Subscription {subscription.get('id')} ended",
        )
