from dataclasses import dataclass, field
from typing import Optional, Protocol
from datetime import datetime

REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")


@dataclass
class CheckoutSessionDto:
    session_id: str
    url: str
    expires_at: Optional[datetime] = None


@dataclass
class RefundDto:
    id: str
    payment_intent_id: str
    amount: Optional[int] = None
    reason: Optional[str] = None
    status: Optional[str] = None


@dataclass
class WebhookEndpointDto:
    id: str
    url: str
    created: bool
    secret: Optional[str] = field(default=None, repr=False)


class CheckoutGateway(Protocol):
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
        ...

    def expire_session(self, organization_id: str, session_id: str) -> None:
        ...

    def refund(
        self,
        organization_id: str,
        payment_intent_id: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundDto:
        ...

    def register_webhook_endpoint(self, organization_id: str) -> WebhookEndpointDto:
        ...

    def remove_webhook_endpoint(self, organization_id: str) -> bool:
        ...
