# clinic_booking/db/models/appointment_type.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid


class AppointmentType(SQLModel, table=True):
    __tablename__ = "organization_appointment_types"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    name: str = Field(max_length=200)
    default_duration_minutes: int = Field(default=30)
    is_active: bool = Field(default=True)
    requires_payment: bool = Field(default=False)
    stripe_price_id: Optional[str] = Field(default=None)
    payment_type: str = Field(default="one_time")  # one_time | subscription
    created_at: datetime = Field(default_factory=datetime.utcnow)
