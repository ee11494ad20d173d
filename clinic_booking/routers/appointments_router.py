import logging
from fastapi import APIRouter, Depends, HTTPException

from ..auth import Principal, get_current_principal
from ..exceptions import raise_for_error
from ..application.ports.appointments_repo import AppointmentDto, NewAppointment
from ..application.services.appointment_lifecycle_service import AppointmentLifecycleService
from ..schemas.common.common import ErrorResponse
from ..schemas.appointments.appointment import (
    AppointmentCreate,
    AppointmentResponse,
    AuditEntryResponse,
    CancelAppointmentRequest,
    CancelAppointmentResponse,
    CreateAppointmentResponse,
)
from .dependencies import get_lifecycle_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)


def to_response(a: AppointmentDto) -> AppointmentResponse:
    return AppointmentResponse(
        id=a.id,
        organization_id=a.organization_id,
        appointment_type_id=a.appointment_type_id,
        patient_id=a.patient_id,
        title=a.title,
        description=a.description,
        start_time=a.start_time,
        end_time=a.end_time,
        status=a.status,
        payment_status=a.payment_status,
        meeting_link=a.meeting_link,
        checkout_session_id=a.checkout_session_id,
        payment_intent_id=a.payment_intent_id,
        payment_amount=a.payment_amount,
        payment_currency=a.payment_currency,
        notes=a.notes,
        audit=[
            AuditEntryResponse(kind=e.kind, detail=e.detail, actor=e.actor, created_at=e.created_at)
            for e in a.audit
        ],
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


def _get_owned(lifecycle: AppointmentLifecycleService, appointment_id: str, principal: Principal) -> AppointmentDto:
    appt = lifecycle.get(appointment_id)
    if not appt or appt.organization_id != principal.organization_id:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appt


@router.post("/", response_model=CreateAppointmentResponse, status_code=201)
def create_appointment(
    body: AppointmentCreate,
    principal: Principal = Depends(get_current_principal),
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    result = lifecycle.create(
        NewAppointment(
            title=body.title,
            description=body.description,
            start_time=body.start_time,
            end_time=body.end_time,
            appointment_type_id=body.appointment_type_id,
            patient_id=body.patient_id,
            organization_id=principal.organization_id,
            created_by_id=principal.user_id,
            meeting_link=body.meeting_link,
            meeting_id=body.meeting_id,
        ),
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    if result.error:
        raise_for_error(result.error, appointment_id=result.appointment_id)
    return CreateAppointmentResponse(
        appointment_id=result.appointment_id,
        requires_payment=result.requires_payment,
        checkout_url=result.checkout_url,
        session_id=result.session_id,
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    principal: Principal = Depends(get_current_principal),
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    return to_response(_get_owned(lifecycle, appointment_id, principal))


@router.post("/{appointment_id}/cancel", response_model=CancelAppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    body: CancelAppointmentRequest,
    principal: Principal = Depends(get_current_principal),
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    _get_owned(lifecycle, appointment_id, principal)
    result = lifecycle.cancel(
        appointment_id,
        reason=body.reason,
        refund_amount=body.refund_amount,
        refund_reason=body.refund_reason,
        actor=principal.user_id,
    )
    if result.error:
        raise_for_error(result.error)
    if result.refund_failed:
        logger.warning(f"Appointment {appointment_id} cancelled but refund needs manual follow-up")
    return CancelAppointmentResponse(
        appointment_id=appointment_id,
        cancelled=result.cancelled,
        refunded=result.refunded,
        refund_id=result.refund_id,
        refund_failed=result.refund_failed,
        already_cancelled=result.already_cancelled,
    )
