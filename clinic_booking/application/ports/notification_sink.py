from typing import Protocol

from .appointments_repo import AppointmentDto


class NotificationSink(Protocol):
    def appointment_confirmed(self, appointment: AppointmentDto) -> None:
        ...

    def appointment_cancelled(self, appointment: AppointmentDto, refunded: bool) -> None:
        ...

    def payment_failed(self, appointment: AppointmentDto) -> None:
        ...

    def checkout_abandoned(self, appointment: AppointmentDto) -> None:
        ...
