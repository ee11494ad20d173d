import json
from typing import Any, Dict, Optional

import stripe

from ...config import settings
from ...application.errors import AuthenticityError, MalformedEventError
from ...application.ports.event_verifier import EventVerifier


class StripeEventVerifier(EventVerifier):
    def __init__(self, tolerance: Optional[int] = None):
        self.tolerance = tolerance or settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS

    def verify(self, payload: bytes, signature: str, secret: str) -> Dict[str, Any]:
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEventError("Webhook body is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(body, signature, secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise AuthenticityError("Webhook signature verification failed") from e

        try:
            event = json.loads(body)
        except ValueError as e:
            raise MalformedEventError("Webhook body is not valid JSON") from e
        if not isinstance(event, dict):
            raise MalformedEventError("Webhook body is not an event object")
        return event
