# clinic_booking/db/models/webhook_event.py
from sqlmodel import SQLModel, Field
from datetime import datetime


class ProcessedWebhookEvent(SQLModel, table=True):
    __tablename__ = "processed_webhook_events"
    event_id: str = Field(primary_key=True, max_length=255)
    organization_id: str = Field(index=True)
    event_type: str = Field(max_length=100)
    processed_at: datetime = Field(default_factory=datetime.utcnow)
