# clinic_booking/schemas/appointments/appointment.py
from pydantic import BaseModel, Field, model_validator
from typing import List, Literal, Optional
from datetime import datetime

__all__ = [
    "AppointmentCreate",
    "CreateAppointmentResponse",
    "RetryPaymentRequest",
    "CheckoutResponse",
    "CancelAppointmentRequest",
    "CancelAppointmentResponse",
    "AuditEntryResponse",
    "AppointmentResponse",
    "CheckoutStatusResponse",
    "CheckoutAbandonedResponse",
]

RefundReason = Literal["duplicate", "fraudulent", "requested_by_customer"]


class AppointmentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    appointment_type_id: str
    patient_id: str
    meeting_link: Optional[str] = None  # from meeting provisioning, if any
    meeting_id: Optional[str] = None
    success_url: Optional[str] = None  # required when the type needs payment
    cancel_url: Optional[str] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class CreateAppointmentResponse(BaseModel):
    appointment_id: str
    requires_payment: bool
    checkout_url: Optional[str] = None
    session_id: Optional[str] = None


class RetryPaymentRequest(BaseModel):
    success_url: str
    cancel_url: str


class CheckoutResponse(BaseModel):
    appointment_id: str
    checkout_url: str
    session_id: str


class CancelAppointmentRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    refund_amount: Optional[int] = Field(default=None, gt=0)  # minor units, partial refund
    refund_reason: RefundReason = "requested_by_customer"


class CancelAppointmentResponse(BaseModel):
    appointment_id: str
    cancelled: bool
    refunded: bool
    refund_id: Optional[str] = None
    refund_failed: bool = False
    already_cancelled: bool = False


class AuditEntryResponse(BaseModel):
    kind: str
    detail: str
    actor: Optional[str] = None
    created_at: datetime


class AppointmentResponse(BaseModel):
    id: str
    organization_id: str
    appointment_type_id: Optional[str] = None
    patient_id: str
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: str
    payment_status: str
    meeting_link: Optional[str] = None
    checkout_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    payment_amount: Optional[int] = None
    payment_currency: Optional[str] = None
    notes: str = ""
    audit: List[AuditEntryResponse] = []
    created_at: datetime
    updated_at: datetime


class CheckoutStatusResponse(BaseModel):
    appointment_id: str
    title: str
    start_time: datetime
    end_time: datetime
    status: str
    payment_status: str
    retryable: bool


class CheckoutAbandonedResponse(BaseModel):
    appointment_id: str
    payment_status: str
    notified: bool
