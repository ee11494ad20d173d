import json
import logging
from datetime import datetime
from typing import Any, Dict

from ...application.ports.appointments_repo import AppointmentDto
from ...application.ports.notification_sink import NotificationSink


class LogNotificationSink(NotificationSink):
    """Hands notification requests to the mail pipeline through the log stream."""

    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    def _emit(self, template: str, appointment: AppointmentDto, **extra: Any) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat(),
            "template": template,
            "appointment_id": appointment.id,
            "organization_id": appointment.organization_id,
            "patient_id": appointment.patient_id,
            "start_time": appointment.start_time.isoformat(),
            "meeting_link": appointment.meeting_link,
        }
        entry.update(extra)
        self._logger.info(f"NOTIFY: {json.dumps(entry)}")

    def appointment_confirmed(self, appointment: AppointmentDto) -> None:
        self._emit("appointment_confirmed", appointment)

    def appointment_cancelled(self, appointment: AppointmentDto, refunded: bool) -> None:
        self._emit("appointment_cancelled", appointment, refunded=refunded)

    def payment_failed(self, appointment: AppointmentDto) -> None:
        self._emit("payment_failed", appointment)

    def checkout_abandoned(self, appointment: AppointmentDto) -> None:
        self._emit("checkout_abandoned", appointment)
