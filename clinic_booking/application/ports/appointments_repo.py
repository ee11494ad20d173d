from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from datetime import datetime


class AppointmentStatus:
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class PaymentStatus:
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentType:
    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"


class AuditKind:
    CREATED = "created"
    CHECKOUT_OPENED = "checkout_opened"
    CHECKOUT_FAILED = "checkout_failed"
    CHECKOUT_ABANDONED = "checkout_abandoned"
    SESSION_EXPIRED = "session_expired"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION = "subscription"
    REFUND_ISSUED = "refund_issued"
    REFUND_FAILED = "refund_failed"
    CANCELLED = "cancelled"


@dataclass
class AppointmentTypeDto:
    id: str
    organization_id: str
    name: str
    requires_payment: bool
    stripe_price_id: Optional[str]
    payment_type: str = PaymentType.ONE_TIME
    is_active: bool = True


@dataclass
class PatientDto:
    id: str
    first_name: str
    last_name: str
    email: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class AuditEntryDto:
    kind: str
    detail: str
    created_at: datetime
    actor: Optional[str] = None

    def render(self) -> str:
        return f"[{self.created_at.isoformat(timespec='seconds')}] {self.detail}"


@dataclass
class NewAppointment:
    title: str
    start_time: datetime
    end_time: datetime
    appointment_type_id: str
    patient_id: str
    organization_id: str
    description: Optional[str] = None
    created_by_id: Optional[str] = None
    meeting_link: Optional[str] = None
    meeting_id: Optional[str] = None


@dataclass
class AppointmentDto:
    id: str
    organization_id: str
    appointment_type_id: Optional[str]
    patient_id: str
    title: str
    start_time: datetime
    end_time: datetime
    status: str
    payment_status: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    created_by_id: Optional[str] = None
    meeting_link: Optional[str] = None
    meeting_id: Optional[str] = None
    checkout_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    subscription_id: Optional[str] = None
    payment_amount: Optional[int] = None
    payment_currency: Optional[str] = None
    abandoned_checkout_notified: bool = False
    audit: List[AuditEntryDto] = field(default_factory=list)

    @property
    def notes(self) -> str:
        """Audit trail flattened to the legacy one-line-per-event notes text."""
        return "\n".join(entry.render() for entry in self.audit)


class AppointmentsRepository:
    def get_appointment_type(self, appointment_type_id: str) -> Optional[AppointmentTypeDto]:
        ...

    def get_patient(self, patient_id: str, organization_id: str) -> Optional[PatientDto]:
        """The patient, only if they are linked to the organization."""
        ...

    def create(self, data: NewAppointment, status: str, payment_status: str) -> AppointmentDto:
        ...

    def get_by_id(self, appointment_id: str) -> Optional[AppointmentDto]:
        ...

    def get_by_checkout_session(self, session_id: str) -> Optional[AppointmentDto]:
        ...

    def compare_and_set(
        self,
        appointment_id: str,
        expected_payment_statuses: Iterable[str],
        expected_statuses: Optional[Iterable[str]] = None,
        **changes,
    ) -> bool:
        """Apply ``changes`` only if the row is still in one of the expected states.

        Returns False when another writer moved the appointment first.
        """
        ...

    def append_audit(self, appointment_id: str, kind: str, detail: str, actor: Optional[str] = None) -> None:
        ...

    def mark_abandoned_notified(self, appointment_id: str) -> None:
        ...
