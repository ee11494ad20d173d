from typing import Protocol


class WebhookEventLedger(Protocol):
    def has_processed(self, event_id: str) -> bool:
        ...

    def record(self, event_id: str, organization_id: str, event_type: str) -> bool:
        """Store the event id. False if another delivery recorded it first."""
        ...
