# clinic_booking/db/models/appointment.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    appointment_type_id: Optional[str] = Field(default=None, foreign_key="organization_appointment_types.id")
    patient_id: str = Field(foreign_key="patients.id", index=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    created_by_id: Optional[str] = None
    meeting_link: Optional[str] = None
    meeting_id: Optional[str] = None

    status: str = Field(default="scheduled", index=True)
    payment_status: str = Field(default="not_required")
    checkout_session_id: Optional[str] = Field(default=None, index=True)
    payment_intent_id: Optional[str] = None
    subscription_id: Optional[str] = None
    payment_amount: Optional[int] = None  # minor currency units
    payment_currency: Optional[str] = Field(default=None, max_length=3)
    abandoned_checkout_notified: bool = Field(default=False)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class AppointmentAuditEntry(SQLModel, table=True):
    """Append-only history of lifecycle events for one appointment."""

    __tablename__ = "appointment_audit_entries"
    id: Optional[int] = Field(default=None, primary_key=True)
    appointment_id: str = Field(foreign_key="appointments.id", index=True)
    kind: str = Field(max_length=50)
    detail: str
    actor: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
