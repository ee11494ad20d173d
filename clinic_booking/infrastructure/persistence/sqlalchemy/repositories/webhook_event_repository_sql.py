import logging
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from .....db.models import ProcessedWebhookEvent
from .....application.ports.webhook_event_ledger import WebhookEventLedger

logger = logging.getLogger(__name__)


class SqlWebhookEventLedger(WebhookEventLedger):
    def __init__(self, session: Session):
        self.session = session

    def has_processed(self, event_id: str) -> bool:
        return self.session.get(ProcessedWebhookEvent, event_id) is not None

    def record(self, event_id: str, organization_id: str, event_type: str) -> bool:
        self.session.add(
            ProcessedWebhookEvent(event_id=event_id, organization_id=organization_id, event_type=event_type)
        )
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.info(f"Webhook event {event_id} was recorded by a concurrent delivery")
            return False
        return True
