from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, HTTPException

from ..config import settings
from ..exceptions import raise_for_error
from ..application.errors import ValidationError
from ..application.ports.appointments_repo import PaymentStatus
from ..application.services.appointment_lifecycle_service import (
    OPEN_PAYMENT_STATUSES,
    RETRYABLE_STATUSES,
    AppointmentLifecycleService,
)
from ..schemas.common.common import ErrorResponse
from ..schemas.appointments.appointment import (
    CheckoutAbandonedResponse,
    CheckoutResponse,
    CheckoutStatusResponse,
    RetryPaymentRequest,
)
from .dependencies import get_lifecycle_service

router = APIRouter(prefix="/public", tags=["Public Booking"], responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}})


def _check_redirect(url: str) -> None:
    """Reject redirect targets outside the clinic's own origins."""
    parts = urlsplit(url)
    origin = f"{parts.scheme}://{parts.netloc}".lower()
    if parts.scheme not in ("http", "https") or origin not in settings.allowed_redirect_origins:
        raise_for_error(ValidationError(f"Redirect URL not allowed: {url}"))


@router.get("/checkout-sessions/{session_id}", response_model=CheckoutStatusResponse)
def get_checkout_status(
    session_id: str,
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    appt = lifecycle.get_by_checkout_session(session_id)
    if not appt:
        raise HTTPException(status_code=404, detail="Checkout session not found")
    return CheckoutStatusResponse(
        appointment_id=appt.id,
        title=appt.title,
        start_time=appt.start_time,
        end_time=appt.end_time,
        status=appt.status,
        payment_status=appt.payment_status,
        retryable=appt.payment_status in OPEN_PAYMENT_STATUSES and appt.status in RETRYABLE_STATUSES,
    )


@router.post("/appointments/{appointment_id}/retry-payment", response_model=CheckoutResponse)
def retry_payment(
    appointment_id: str,
    body: RetryPaymentRequest,
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    _check_redirect(body.success_url)
    _check_redirect(body.cancel_url)
    result = lifecycle.retry_payment(appointment_id, success_url=body.success_url, cancel_url=body.cancel_url)
    if result.error:
        raise_for_error(result.error)
    return CheckoutResponse(
        appointment_id=appointment_id,
        checkout_url=result.checkout_url,
        session_id=result.session_id,
    )


@router.post("/appointments/{appointment_id}/checkout-abandoned", response_model=CheckoutAbandonedResponse)
def checkout_abandoned(
    appointment_id: str,
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    result = lifecycle.record_checkout_abandoned(appointment_id)
    if result.error:
        raise_for_error(result.error)
    return CheckoutAbandonedResponse(
        appointment_id=appointment_id,
        payment_status=result.appointment.payment_status if result.appointment else PaymentStatus.PENDING,
        notified="checkout_abandoned" in result.notifications,
    )
