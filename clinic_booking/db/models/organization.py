# clinic_booking/db/models/organization.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(max_length=200)
    slug: Optional[str] = Field(default=None, max_length=100, unique=True, index=True)

    # Per-tenant Stripe credentials, never shared across organizations
    stripe_enabled: bool = Field(default=False)
    stripe_secret_key: Optional[str] = Field(default=None)
    stripe_publishable_key: Optional[str] = Field(default=None)
    stripe_webhook_secret: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
