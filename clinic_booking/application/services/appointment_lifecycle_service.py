import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..errors import (
    BookingError,
    ConfigurationError,
    ConflictError,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from ..ports.appointments_repo import (
    AppointmentDto,
    AppointmentsRepository,
    AppointmentStatus,
    AuditKind,
    NewAppointment,
    PaymentStatus,
)
from ..ports.checkout_gateway import REFUND_REASONS, CheckoutGateway
from ..ports.notification_sink import NotificationSink

logger = logging.getLogger(__name__)

OPEN_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.FAILED)
RETRYABLE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.PAYMENT_FAILED)
CLOSED_STATUSES = (AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW)


@dataclass
class CreateAppointmentResult:
    appointment_id: Optional[str] = None
    requires_payment: bool = False
    checkout_url: Optional[str] = None
    session_id: Optional[str] = None
    error: Optional[BookingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CheckoutResult:
    appointment_id: str
    checkout_url: Optional[str] = None
    session_id: Optional[str] = None
    error: Optional[BookingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CancelResult:
    appointment_id: str
    cancelled: bool = False
    refunded: bool = False
    refund_id: Optional[str] = None
    refund_failed: bool = False
    already_cancelled: bool = False
    error: Optional[BookingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class TransitionResult:
    appointment_id: str
    changed: bool = False
    appointment: Optional[AppointmentDto] = None
    error: Optional[BookingError] = None
    # NotificationSink method names owed for this transition
    notifications: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


def _with_reason(detail: str, reason: Optional[str]) -> str:
    return f"{detail} - Reason: {reason}" if reason else detail


@dataclass
class AppointmentLifecycleService:
    """Single writer of appointment state.

    Every mutation goes through a compare-and-swap on (status, payment_status),
    so a retry, a cancel and a webhook confirmation racing on the same
    appointment cannot both win.
    """

    repo: AppointmentsRepository
    gateway: CheckoutGateway
    notifications: NotificationSink

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, appointment_id: str) -> Optional[AppointmentDto]:
        return self.repo.get_by_id(appointment_id)

    def get_by_checkout_session(self, session_id: str) -> Optional[AppointmentDto]:
        return self.repo.get_by_checkout_session(session_id)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def create(
        self,
        data: NewAppointment,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> CreateAppointmentResult:
        if data.end_time <= data.start_time:
            return CreateAppointmentResult(error=ValidationError("Appointment must end after it starts"))

        appointment_type = self.repo.get_appointment_type(data.appointment_type_id)
        if (
            not appointment_type
            or not appointment_type.is_active
            or appointment_type.organization_id != data.organization_id
        ):
            return CreateAppointmentResult(error=NotFoundError("Appointment type not found"))

        patient = self.repo.get_patient(data.patient_id, data.organization_id)
        if not patient:
            return CreateAppointmentResult(
                requires_payment=appointment_type.requires_payment,
                error=NotFoundError("Patient not found"),
            )

        if not appointment_type.requires_payment:
            appt = self.repo.create(data, AppointmentStatus.CONFIRMED, PaymentStatus.NOT_REQUIRED)
            self.repo.append_audit(appt.id, AuditKind.CREATED, "Booked, no payment required", actor=data.created_by_id)
            logger.info(f"Appointment {appt.id} confirmed without payment for org {data.organization_id}")
            self._notify("appointment_confirmed", appt.id)
            return CreateAppointmentResult(appointment_id=appt.id, requires_payment=False)

        if not success_url or not cancel_url:
            return CreateAppointmentResult(
                requires_payment=True,
                error=ValidationError("Success and cancel URLs are required for paid appointments"),
            )

        appt = self.repo.create(data, AppointmentStatus.SCHEDULED, PaymentStatus.PENDING)
        self.repo.append_audit(appt.id, AuditKind.CREATED, "Booked, awaiting payment", actor=data.created_by_id)

        try:
            session = self.gateway.open_session(
                organization_id=data.organization_id,
                appointment_id=appt.id,
                appointment_type_id=data.appointment_type_id,
                patient_email=patient.email,
                patient_name=patient.full_name,
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except (ConfigurationError, GatewayError) as e:
            # Keep the row so the patient can retry instead of losing the slot
            self.repo.compare_and_set(
                appt.id,
                [PaymentStatus.PENDING],
                [AppointmentStatus.SCHEDULED],
                status=AppointmentStatus.PAYMENT_FAILED,
                payment_status=PaymentStatus.FAILED,
            )
            self.repo.append_audit(appt.id, AuditKind.CHECKOUT_FAILED, f"Failed to create checkout session: {e.message}")
            logger.warning(f"Checkout session failed for appointment {appt.id} ({e.kind}): {e.message}")
            return CreateAppointmentResult(appointment_id=appt.id, requires_payment=True, error=e)

        if not self.repo.compare_and_set(
            appt.id,
            [PaymentStatus.PENDING],
            [AppointmentStatus.SCHEDULED],
            checkout_session_id=session.session_id,
        ):
            # Cancelled while the session was being opened
            self._expire_quietly(data.organization_id, session.session_id)
            return CreateAppointmentResult(
                appointment_id=appt.id,
                requires_payment=True,
                error=ConflictError("Appointment changed while the checkout was being opened"),
            )
        self.repo.append_audit(appt.id, AuditKind.CHECKOUT_OPENED, f"Checkout session {session.session_id} opened")
        logger.info(f"Appointment {appt.id} awaiting payment in session {session.session_id}")
        return CreateAppointmentResult(
            appointment_id=appt.id,
            requires_payment=True,
            checkout_url=session.url,
            session_id=session.session_id,
        )

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------
    def retry_payment(self, appointment_id: str, success_url: str, cancel_url: str) -> CheckoutResult:
        appt = self.repo.get_by_id(appointment_id)
        if not appt:
            return CheckoutResult(appointment_id, error=NotFoundError("Appointment not found"))
        if appt.payment_status not in OPEN_PAYMENT_STATUSES or appt.status not in RETRYABLE_STATUSES:
            return CheckoutResult(
                appointment_id,
                error=ConflictError(f"Payment cannot be retried for an appointment that is {appt.status}/{appt.payment_status}"),
            )
        patient = self.repo.get_patient(appt.patient_id, appt.organization_id)
        if not patient:
            return CheckoutResult(appointment_id, error=NotFoundError("Patient not found"))

        try:
            session = self.gateway.open_session(
                organization_id=appt.organization_id,
                appointment_id=appt.id,
                appointment_type_id=appt.appointment_type_id,
                patient_email=patient.email,
                patient_name=patient.full_name,
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except (ConfigurationError, GatewayError) as e:
            self.repo.append_audit(appt.id, AuditKind.CHECKOUT_FAILED, f"Payment retry failed: {e.message}")
            logger.warning(f"Payment retry failed for appointment {appt.id} ({e.kind}): {e.message}")
            return CheckoutResult(appointment_id, error=e)

        swapped = self.repo.compare_and_set(
            appt.id,
            OPEN_PAYMENT_STATUSES,
            expected_statuses=RETRYABLE_STATUSES,
            status=AppointmentStatus.SCHEDULED,
            payment_status=PaymentStatus.PENDING,
            checkout_session_id=session.session_id,
        )
        if not swapped:
            # Cancelled or paid while the session was being opened
            self._expire_quietly(appt.organization_id, session.session_id)
            return CheckoutResult(
                appointment_id,
                error=ConflictError("Appointment changed while the checkout was being opened"),
            )

        if appt.checkout_session_id and appt.checkout_session_id != session.session_id:
            self._expire_quietly(appt.organization_id, appt.checkout_session_id)
        self.repo.append_audit(appt.id, AuditKind.CHECKOUT_OPENED, f"Payment retry: checkout session {session.session_id} opened")
        return CheckoutResult(appointment_id, checkout_url=session.url, session_id=session.session_id)

    # ------------------------------------------------------------------
    # Webhook-driven transitions
    # ------------------------------------------------------------------
    def confirm_paid(
        self,
        appointment_id: str,
        payment_intent_id: Optional[str] = None,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        session_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        notify: bool = True,
    ) -> TransitionResult:
        appt = self.repo.get_by_id(appointment_id)
        if not appt:
            return TransitionResult(appointment_id, error=NotFoundError("Appointment not found"))
        if appt.payment_status == PaymentStatus.PAID:
            if payment_intent_id and appt.payment_intent_id and payment_intent_id != appt.payment_intent_id:
                # A superseded session was paid as well; the patient was charged twice
                self.repo.append_audit(
                    appointment_id,
                    AuditKind.PAYMENT_SUCCEEDED,
                    f"Duplicate payment {payment_intent_id}; refund required",
                )
                logger.warning(
                    f"Appointment {appointment_id} already paid by {appt.payment_intent_id}; "
                    f"duplicate payment {payment_intent_id} needs a refund"
                )
                return TransitionResult(appointment_id, appointment=self.repo.get_by_id(appointment_id))
            return TransitionResult(appointment_id, appointment=appt)
        if appt.payment_status not in OPEN_PAYMENT_STATUSES:
            return TransitionResult(
                appointment_id,
                appointment=appt,
                error=ConflictError(f"Cannot record payment on an appointment that is {appt.payment_status}"),
            )

        changes = {"payment_status": PaymentStatus.PAID}
        for key, value in (
            ("payment_intent_id", payment_intent_id),
            ("payment_amount", amount),
            ("payment_currency", currency),
            ("checkout_session_id", session_id),
            ("subscription_id", subscription_id),
        ):
            if value is not None:
                changes[key] = value
        reference = payment_intent_id or session_id or subscription_id or "unknown"

        if appt.status == AppointmentStatus.CANCELLED:
            if not self.repo.compare_and_set(appointment_id, OPEN_PAYMENT_STATUSES, [AppointmentStatus.CANCELLED], **changes):
                return self._lost_race(appointment_id)
            self.repo.append_audit(
                appointment_id,
                AuditKind.PAYMENT_SUCCEEDED,
                f"Payment {reference} received after cancellation; refund required",
            )
            logger.warning(f"Appointment {appointment_id} was paid after cancellation; manual refund required")
            return TransitionResult(appointment_id, changed=True, appointment=self.repo.get_by_id(appointment_id))

        if not self.repo.compare_and_set(
            appointment_id,
            OPEN_PAYMENT_STATUSES,
            RETRYABLE_STATUSES,
            status=AppointmentStatus.CONFIRMED,
            **changes,
        ):
            return self._lost_race(appointment_id)
        self.repo.append_audit(appointment_id, AuditKind.PAYMENT_SUCCEEDED, f"Payment completed: {reference}")
        logger.info(f"Appointment {appointment_id} confirmed after payment {reference}")
        result = TransitionResult(
            appointment_id,
            changed=True,
            appointment=self.repo.get_by_id(appointment_id),
            notifications=["appointment_confirmed"],
        )
        if notify:
            self.send_notifications(result)
        return result

    def mark_payment_failed(
        self,
        appointment_id: str,
        reason: str,
        payment_intent_id: Optional[str] = None,
        notify: bool = True,
    ) -> TransitionResult:
        appt = self.repo.get_by_id(appointment_id)
        if not appt:
            return TransitionResult(appointment_id, error=NotFoundError("Appointment not found"))
        if appt.payment_status == PaymentStatus.FAILED:
            return TransitionResult(appointment_id, appointment=appt)

        changes = {}
        if payment_intent_id:
            changes["payment_intent_id"] = payment_intent_id
        if not self.repo.compare_and_set(
            appointment_id,
            [PaymentStatus.PENDING],
            [AppointmentStatus.SCHEDULED],
            status=AppointmentStatus.PAYMENT_FAILED,
            payment_status=PaymentStatus.FAILED,
            **changes,
        ):
            # A late failure for an attempt that was superseded by a success
            return TransitionResult(
                appointment_id,
                appointment=appt,
                error=ConflictError(f"Ignoring payment failure for an appointment that is {appt.status}/{appt.payment_status}"),
            )
        self.repo.append_audit(appointment_id, AuditKind.PAYMENT_FAILED, f"Payment failed: {reason}")
        result = TransitionResult(
            appointment_id,
            changed=True,
            appointment=self.repo.get_by_id(appointment_id),
            notifications=["payment_failed"],
        )
        if notify:
            self.send_notifications(result)
        return result

    def apply_subscription_status(
        self,
        appointment_id: str,
        subscription_id: Optional[str],
        paid: bool,
        detail: str,
        notify: bool = True,
    ) -> TransitionResult:
        """Renewal or dunning outcome of a subscription-backed appointment."""
        appt = self.repo.get_by_id(appointment_id)
        if not appt:
            return TransitionResult(appointment_id, error=NotFoundError("Appointment not found"))

        changes = {"subscription_id": subscription_id} if subscription_id else {}
        if paid:
            target_status, target_payment = AppointmentStatus.CONFIRMED, PaymentStatus.PAID
            expected_payment = OPEN_PAYMENT_STATUSES
            expected_status = RETRYABLE_STATUSES
            notification = "appointment_confirmed"
        else:
            target_status, target_payment = AppointmentStatus.PAYMENT_FAILED, PaymentStatus.FAILED
            expected_payment = (PaymentStatus.PENDING, PaymentStatus.PAID)
            expected_status = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)
            notification = "payment_failed"

        if appt.payment_status == target_payment:
            if subscription_id and appt.subscription_id != subscription_id:
                self.repo.compare_and_set(appointment_id, [target_payment], **changes)
            self.repo.append_audit(appointment_id, AuditKind.SUBSCRIPTION, detail)
            return TransitionResult(appointment_id, appointment=self.repo.get_by_id(appointment_id))

        if not self.repo.compare_and_set(
            appointment_id,
            expected_payment,
            expected_status,
            status=target_status,
            payment_status=target_payment,
            **changes,
        ):
            return TransitionResult(
                appointment_id,
                appointment=appt,
                error=ConflictError(f"Subscription update does not apply to an appointment that is {appt.status}/{appt.payment_status}"),
            )
        self.repo.append_audit(appointment_id, AuditKind.SUBSCRIPTION, detail)
        result = TransitionResult(
            appointment_id,
            changed=True,
            appointment=self.repo.get_by_id(appointment_id),
            notifications=[notification],
        )
        if notify:
            self.send_notifications(result)
        return result

    def record_event(self, appointment_id: str, kind: str, detail: str) -> TransitionResult:
        """Audit-only: the event is worth remembering but changes no state."""
        appt = self.repo.get_by_id(appointment_id)
        if not appt:
            return TransitionResult(appointment_id, error=NotFoundError("Appointment not found"))
        self.repo.append_audit(appointment_id, kind, detail)
        return TransitionResult(appointment_id, appointment=appt)

    def record_session_expired(self, appointment_id: str, session_id: str) -> TransitionResult:
        appt = self.repo.get_by_id(appointment_id)
        if not appt:
            return TransitionResult(appointment_id, error=NotFoundError("Appointment not found"))
        if appt.checkout_session_id != session_id or appt.payment_status != PaymentStatus.PENDING:
            return TransitionResult(appointment_id, appointment=appt)
        return self.record_event(
            appointment_id,
            AuditKind.SESSION_EXPIRED,
            f"Checkout session {session_id} expired without payment",
        )

    # ------------------------------------------------------------------
    # Abandoned checkout
    # ------------------------------------------------------------------
    def record_checkout_abandoned(self, appointment_id: str) -> TransitionResult:
        appt = self.repo.get_by_id(appointment_id)
        if not appt:
            return TransitionResult(appointment_id, error=NotFoundError("Appointment not found"))
        if appt.payment_status != PaymentStatus.PENDING:
            return TransitionResult(
                appointment_id,
                appointment=appt,
                error=ConflictError(f"Checkout is not pending for this appointment ({appt.payment_status})"),
            )

        self.repo.append_audit(appointment_id, AuditKind.CHECKOUT_ABANDONED, "Checkout abandoned before payment")
        result = TransitionResult(appointment_id, appointment=appt)
        if not appt.abandoned_checkout_notified:
            self._notify("checkout_abandoned", appointment_id)
            self.repo.mark_abandoned_notified(appointment_id)
            result.notifications.append("checkout_abandoned")
        result.appointment = self.repo.get_by_id(appointment_id)
        return result

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------
    def cancel(
        self,
        appointment_id: str,
        reason: Optional[str] = None,
        refund_amount: Optional[int] = None,
        refund_reason: str = "requested_by_customer",
        actor: Optional[str] = None,
    ) -> CancelResult:
        appt = self.repo.get_by_id(appointment_id)
        if not appt:
            return CancelResult(appointment_id, error=NotFoundError("Appointment not found"))
        if appt.status == AppointmentStatus.CANCELLED:
            return self._already_cancelled(appt)
        if appt.status in CLOSED_STATUSES:
            return CancelResult(appointment_id, error=ConflictError(f"Cannot cancel an appointment that is {appt.status}"))
        if refund_reason not in REFUND_REASONS:
            return CancelResult(appointment_id, error=ValidationError(f"Invalid refund reason: {refund_reason}"))
        if refund_amount is not None and refund_amount <= 0:
            return CancelResult(appointment_id, error=ValidationError("Refund amount must be positive"))

        if appt.payment_status == PaymentStatus.PAID and appt.payment_intent_id:
            return self._cancel_with_refund(appt, reason, refund_amount, refund_reason, actor)

        if not self.repo.compare_and_set(
            appointment_id,
            [appt.payment_status],
            [appt.status],
            status=AppointmentStatus.CANCELLED,
        ):
            return self._cancel_lost_race(appointment_id)
        if appt.checkout_session_id and appt.payment_status in OPEN_PAYMENT_STATUSES:
            self._expire_quietly(appt.organization_id, appt.checkout_session_id)
        detail = "Cancelled"
        if appt.payment_status == PaymentStatus.PAID:
            detail = "Cancelled (no payment intent recorded, refund not attempted)"
        self.repo.append_audit(appointment_id, AuditKind.CANCELLED, _with_reason(detail, reason), actor=actor)
        self._notify("appointment_cancelled", appointment_id, refunded=False)
        return CancelResult(appointment_id, cancelled=True)

    def _cancel_with_refund(
        self,
        appt: AppointmentDto,
        reason: Optional[str],
        refund_amount: Optional[int],
        refund_reason: str,
        actor: Optional[str],
    ) -> CancelResult:
        # Claim the cancellation before calling out, so only one caller refunds
        if not self.repo.compare_and_set(
            appt.id,
            [PaymentStatus.PAID],
            [appt.status],
            status=AppointmentStatus.CANCELLED,
        ):
            return self._cancel_lost_race(appt.id)

        try:
            refund = self.gateway.refund(
                organization_id=appt.organization_id,
                payment_intent_id=appt.payment_intent_id,
                amount=refund_amount,
                reason=refund_reason,
            )
        except (ConfigurationError, GatewayError, ValidationError) as e:
            # Cancellation stands; the refund is left for manual reconciliation
            logger.warning(f"Refund failed for appointment {appt.id}, manual follow-up required: {e.message}")
            self.repo.append_audit(
                appt.id,
                AuditKind.REFUND_FAILED,
                _with_reason(f"Cancelled (refund failed: {e.message}; manual follow-up required)", reason),
                actor=actor,
            )
            self._notify("appointment_cancelled", appt.id, refunded=False)
            return CancelResult(appt.id, cancelled=True, refund_failed=True)

        self.repo.compare_and_set(
            appt.id,
            [PaymentStatus.PAID],
            [AppointmentStatus.CANCELLED],
            payment_status=PaymentStatus.REFUNDED,
        )
        self.repo.append_audit(
            appt.id,
            AuditKind.REFUND_ISSUED,
            _with_reason(f"Cancelled with refund: {refund.id}", reason),
            actor=actor,
        )
        logger.info(f"Appointment {appt.id} cancelled and refunded ({refund.id})")
        self._notify("appointment_cancelled", appt.id, refunded=True)
        return CancelResult(appt.id, cancelled=True, refunded=True, refund_id=refund.id)

    def _already_cancelled(self, appt: AppointmentDto) -> CancelResult:
        return CancelResult(
            appt.id,
            cancelled=True,
            already_cancelled=True,
            refunded=appt.payment_status == PaymentStatus.REFUNDED,
        )

    def _cancel_lost_race(self, appointment_id: str) -> CancelResult:
        current = self.repo.get_by_id(appointment_id)
        if current and current.status == AppointmentStatus.CANCELLED:
            return self._already_cancelled(current)
        return CancelResult(appointment_id, error=ConflictError("Appointment changed while being cancelled"))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def send_notifications(self, result: TransitionResult) -> None:
        for name in result.notifications:
            self._notify(name, result.appointment_id)

    def _notify(self, name: str, appointment_id: str, **kwargs) -> None:
        # Notification failures never roll back a transition
        try:
            appt = self.repo.get_by_id(appointment_id)
            if appt:
                getattr(self.notifications, name)(appt, **kwargs)
        except Exception as e:
            logger.error(f"Notification {name} failed for appointment {appointment_id}: {e}")

    def _expire_quietly(self, organization_id: str, session_id: str) -> None:
        try:
            self.gateway.expire_session(organization_id, session_id)
        except (ConfigurationError, GatewayError) as e:
            logger.warning(f"Could not expire checkout session {session_id}: {e.message}")

    def _lost_race(self, appointment_id: str) -> TransitionResult:
        current = self.repo.get_by_id(appointment_id)
        if current and current.payment_status == PaymentStatus.PAID:
            return TransitionResult(appointment_id, appointment=current)
        return TransitionResult(
            appointment_id,
            appointment=current,
            error=ConflictError("Appointment changed concurrently"),
        )
