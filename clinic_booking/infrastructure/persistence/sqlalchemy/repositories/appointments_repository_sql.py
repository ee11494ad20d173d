from datetime import datetime
from typing import Iterable, List, Optional
from sqlalchemy import update
from sqlmodel import Session, select

from .....db.models import Appointment, AppointmentAuditEntry, AppointmentType, Patient, PatientOrganization
from .....application.ports.appointments_repo import (
    AppointmentsRepository,
    AppointmentDto,
    AppointmentTypeDto,
    AuditEntryDto,
    NewAppointment,
    PatientDto,
)


class SqlAppointmentsRepository(AppointmentsRepository):
    def __init__(self, session: Session):
        self.session = session

    def _audit_for(self, appointment_id: str) -> List[AuditEntryDto]:
        rows = self.session.exec(
            select(AppointmentAuditEntry)
            .where(AppointmentAuditEntry.appointment_id == appointment_id)
            .order_by(AppointmentAuditEntry.id)
        ).all()
        return [AuditEntryDto(kind=r.kind, detail=r.detail, created_at=r.created_at, actor=r.actor) for r in rows]

    def _appt_to_dto(self, a: Appointment) -> AppointmentDto:
        return AppointmentDto(
            id=a.id,
            organization_id=a.organization_id,
            appointment_type_id=a.appointment_type_id,
            patient_id=a.patient_id,
            title=a.title,
            start_time=a.start_time,
            end_time=a.end_time,
            status=a.status,
            payment_status=a.payment_status,
            created_at=a.created_at,
            updated_at=a.updated_at,
            description=a.description,
            created_by_id=a.created_by_id,
            meeting_link=a.meeting_link,
            meeting_id=a.meeting_id,
            checkout_session_id=a.checkout_session_id,
            payment_intent_id=a.payment_intent_id,
            subscription_id=a.subscription_id,
            payment_amount=a.payment_amount,
            payment_currency=a.payment_currency,
            abandoned_checkout_notified=bool(a.abandoned_checkout_notified),
            audit=self._audit_for(a.id),
        )

    def get_appointment_type(self, appointment_type_id: str) -> Optional[AppointmentTypeDto]:
        t = self.session.exec(select(AppointmentType).where(AppointmentType.id == appointment_type_id)).first()
        if not t:
            return None
        return AppointmentTypeDto(
            id=t.id,
            organization_id=t.organization_id,
            name=t.name,
            requires_payment=bool(t.requires_payment),
            stripe_price_id=t.stripe_price_id,
            payment_type=t.payment_type,
            is_active=bool(t.is_active),
        )

    def get_patient(self, patient_id: str, organization_id: str) -> Optional[PatientDto]:
        p = self.session.exec(
            select(Patient)
            .join(PatientOrganization, PatientOrganization.patient_id == Patient.id)
            .where(Patient.id == patient_id)
            .where(PatientOrganization.organization_id == organization_id)
        ).first()
        if not p:
            return None
        return PatientDto(id=p.id, first_name=p.first_name, last_name=p.last_name, email=p.email)

    def create(self, data: NewAppointment, status: str, payment_status: str) -> AppointmentDto:
        appt = Appointment(
            title=data.title,
            description=data.description,
            start_time=data.start_time,
            end_time=data.end_time,
            appointment_type_id=data.appointment_type_id,
            patient_id=data.patient_id,
            organization_id=data.organization_id,
            created_by_id=data.created_by_id,
            meeting_link=data.meeting_link,
            meeting_id=data.meeting_id,
            status=status,
            payment_status=payment_status,
        )
        self.session.add(appt)
        self.session.commit()
        self.session.refresh(appt)
        return self._appt_to_dto(appt)

    def get_by_id(self, appointment_id: str) -> Optional[AppointmentDto]:
        a = self.session.exec(select(Appointment).where(Appointment.id == appointment_id)).first()
        return self._appt_to_dto(a) if a else None

    def get_by_checkout_session(self, session_id: str) -> Optional[AppointmentDto]:
        a = self.session.exec(select(Appointment).where(Appointment.checkout_session_id == session_id)).first()
        return self._appt_to_dto(a) if a else None

    def compare_and_set(
        self,
        appointment_id: str,
        expected_payment_statuses: Iterable[str],
        expected_statuses: Optional[Iterable[str]] = None,
        **changes,
    ) -> bool:
        stmt = (
            update(Appointment)
            .where(Appointment.id == appointment_id)
            .where(Appointment.payment_status.in_(list(expected_payment_statuses)))
        )
        if expected_statuses is not None:
            stmt = stmt.where(Appointment.status.in_(list(expected_statuses)))
        stmt = stmt.values(updated_at=datetime.utcnow(), **changes)
        result = self.session.exec(stmt)
        self.session.commit()
        return result.rowcount == 1

    def append_audit(self, appointment_id: str, kind: str, detail: str, actor: Optional[str] = None) -> None:
        self.session.add(AppointmentAuditEntry(appointment_id=appointment_id, kind=kind, detail=detail, actor=actor))
        self.session.commit()

    def mark_abandoned_notified(self, appointment_id: str) -> None:
        a = self.session.exec(select(Appointment).where(Appointment.id == appointment_id)).first()
        if not a:
            return
        a.abandoned_checkout_notified = True
        a.updated_at = datetime.utcnow()
        self.session.add(a)
        self.session.commit()
