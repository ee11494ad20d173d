# Routers package
from . import appointments_router
from . import public_booking_router
from . import webhooks_router
from . import payments_router

__all__ = [
    "appointments_router",
    "public_booking_router",
    "webhooks_router",
    "payments_router",
]
