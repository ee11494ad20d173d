# Models package (re-export feature modules for stable imports)
from .organization import Organization
from .patient import Patient, PatientOrganization
from .appointment_type import AppointmentType
from .appointment import Appointment, AppointmentAuditEntry
from .webhook_event import ProcessedWebhookEvent

__all__ = [
    "Organization",
    "Patient",
    "PatientOrganization",
    "AppointmentType",
    "Appointment",
    "AppointmentAuditEntry",
    "ProcessedWebhookEvent",
]
