import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Tuple

import stripe

from ...config import settings
from ...application.errors import ConfigurationError, GatewayError, ValidationError
from ...application.ports.appointments_repo import AppointmentsRepository, PaymentType
from ...application.ports.checkout_gateway import (
    REFUND_REASONS,
    CheckoutGateway,
    CheckoutSessionDto,
    RefundDto,
    WebhookEndpointDto,
)
from ...application.ports.payment_config_repo import PaymentConfigRepository, TenantPaymentConfig

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = [
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "invoice.payment_succeeded",
    "invoice.payment_failed",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
]


def build_stripe_client(secret_key: str) -> stripe.StripeClient:
    """A client bound to one tenant's key, with a bounded request timeout."""
    return stripe.StripeClient(
        secret_key,
        http_client=stripe.RequestsClient(timeout=settings.STRIPE_TIMEOUT_SECONDS),
        max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
    )


def _describe(error: Exception) -> str:
    return getattr(error, "user_message", None) or str(error) or error.__class__.__name__


class StripeCheckoutGateway(CheckoutGateway):
    def __init__(
        self,
        config_repo: PaymentConfigRepository,
        appointments_repo: AppointmentsRepository,
        client_factory: Optional[Callable[[str], Any]] = None,
        public_base_url: Optional[str] = None,
        session_ttl_hours: Optional[int] = None,
    ):
        self.config_repo = config_repo
        self.appointments_repo = appointments_repo
        self.client_factory = client_factory or build_stripe_client
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        self.session_ttl_hours = session_ttl_hours or settings.CHECKOUT_SESSION_TTL_HOURS

    def _client(self, organization_id: str, require_enabled: bool = True) -> Tuple[TenantPaymentConfig, Any]:
        config = self.config_repo.get(organization_id)
        if not config or not config.secret_key or (require_enabled and not config.enabled):
            raise ConfigurationError("Stripe not configured for this organization")
        return config, self.client_factory(config.secret_key)

    def webhook_url(self, organization_id: str) -> str:
        return f"{self.public_base_url}/webhook/{organization_id}"

    def open_session(
        self,
        organization_id: str,
        appointment_id: str,
        appointment_type_id: str,
        patient_email: str,
        patient_name: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionDto:
        _, client = self._client(organization_id)
        appointment_type = self.appointments_repo.get_appointment_type(appointment_type_id)
        if not appointment_type or not appointment_type.requires_payment or not appointment_type.stripe_price_id:
            raise ConfigurationError("No Stripe price configured for this appointment type")

        metadata = {
            "organizationId": organization_id,
            "appointmentId": appointment_id,
            "appointmentTypeId": appointment_type_id,
            "patientEmail": patient_email,
            "patientName": patient_name,
        }
        expires_at = datetime.now(timezone.utc) + timedelta(hours=self.session_ttl_hours)
        params = {
            "payment_method_types": ["card"],
            "customer_email": patient_email,
            "line_items": [{"price": appointment_type.stripe_price_id, "quantity": 1}],
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "billing_address_collection": "auto",
            "allow_promotion_codes": True,
            "expires_at": int(expires_at.timestamp()),
        }
        # Copy metadata onto the downstream objects so their events reconcile too
        if appointment_type.payment_type == PaymentType.SUBSCRIPTION:
            params["mode"] = "subscription"
            params["subscription_data"] = {"metadata": metadata}
        else:
            params["mode"] = "payment"
            params["payment_intent_data"] = {"metadata": metadata}

        try:
            session = client.checkout.sessions.create(params=params)
        except stripe.StripeError as e:
            logger.error(f"Error creating Stripe checkout session for org {organization_id}: {_describe(e)}")
            raise GatewayError(f"Failed to create checkout session: {_describe(e)}") from e

        if not session.url:
            raise GatewayError("Failed to create checkout session URL")
        return CheckoutSessionDto(session_id=session.id, url=session.url, expires_at=expires_at)

    def expire_session(self, organization_id: str, session_id: str) -> None:
        _, client = self._client(organization_id, require_enabled=False)
        try:
            client.checkout.sessions.expire(session_id)
        except stripe.StripeError as e:
            raise GatewayError(f"Failed to expire checkout session {session_id}: {_describe(e)}") from e
        logger.info(f"Expired checkout session {session_id} for org {organization_id}")

    def refund(
        self,
        organization_id: str,
        payment_intent_id: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundDto:
        if reason is not None and reason not in REFUND_REASONS:
            raise ValidationError(f"Invalid refund reason: {reason}")
        # Refunds must still work after a tenant switches payments off
        _, client = self._client(organization_id, require_enabled=False)

        params = {"payment_intent": payment_intent_id}
        if amount is not None:
            params["amount"] = amount
        if reason:
            params["reason"] = reason
        try:
            refund = client.refunds.create(params=params)
        except stripe.StripeError as e:
            logger.error(f"Error creating Stripe refund for org {organization_id}: {_describe(e)}")
            raise GatewayError(f"Refund failed: {_describe(e)}") from e

        return RefundDto(
            id=refund.id,
            payment_intent_id=payment_intent_id,
            amount=getattr(refund, "amount", amount),
            reason=getattr(refund, "reason", reason),
            status=getattr(refund, "status", None),
        )

    def _find_endpoint(self, client: Any, url: str) -> Optional[Any]:
        endpoints = client.webhook_endpoints.list(params={"limit": 100})
        return next((e for e in endpoints.data if e.url == url), None)

    def register_webhook_endpoint(self, organization_id: str) -> WebhookEndpointDto:
        config, client = self._client(organization_id)
        url = self.webhook_url(organization_id)
        try:
            existing = self._find_endpoint(client, url)
            if existing is not None and config.webhook_secret:
                logger.info(f"Using existing webhook endpoint: {existing.id}")
                return WebhookEndpointDto(id=existing.id, url=existing.url, created=False)
            if existing is not None:
                # Stripe only reveals the signing secret on creation
                logger.info(f"Recreating webhook endpoint {existing.id}: signing secret is not stored")
                client.webhook_endpoints.delete(existing.id)
            endpoint = client.webhook_endpoints.create(
                params={
                    "url": url,
                    "enabled_events": WEBHOOK_EVENTS,
                    "description": f"Webhook for organization: {config.name or organization_id}",
                }
            )
        except stripe.StripeError as e:
            logger.error(f"Error setting up Stripe webhook for org {organization_id}: {_describe(e)}")
            raise GatewayError(f"Failed to setup Stripe webhook: {_describe(e)}") from e

        self.config_repo.set_webhook_secret(organization_id, endpoint.secret)
        logger.info(f"Created new webhook endpoint: {endpoint.id}")
        return WebhookEndpointDto(id=endpoint.id, url=endpoint.url, created=True, secret=endpoint.secret)

    def remove_webhook_endpoint(self, organization_id: str) -> bool:
        _, client = self._client(organization_id, require_enabled=False)
        url = self.webhook_url(organization_id)
        try:
            existing = self._find_endpoint(client, url)
            if existing is not None:
                client.webhook_endpoints.delete(existing.id)
                logger.info(f"Deleted webhook endpoint: {existing.id}")
        except stripe.StripeError as e:
            logger.error(f"Error removing Stripe webhook for org {organization_id}: {_describe(e)}")
            raise GatewayError(f"Failed to remove Stripe webhook: {_describe(e)}") from e

        self.config_repo.set_webhook_secret(organization_id, None)
        return existing is not None
