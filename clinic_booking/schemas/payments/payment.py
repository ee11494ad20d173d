# clinic_booking/schemas/payments/payment.py
from pydantic import BaseModel

__all__ = [
    "PaymentConfigurationResponse",
    "WebhookEndpointResponse",
    "WebhookRemovedResponse",
    "WebhookAckResponse",
]


class PaymentConfigurationResponse(BaseModel):
    is_configured: bool
    has_publishable_key: bool
    has_secret_key: bool
    is_enabled: bool
    has_webhook_secret: bool


class WebhookEndpointResponse(BaseModel):
    webhook_id: str
    webhook_url: str
    is_new_webhook: bool


class WebhookRemovedResponse(BaseModel):
    success: bool
    removed: bool


class WebhookAckResponse(BaseModel):
    received: bool = True
    status: str
