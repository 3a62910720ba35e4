"""Database models."""

from reminder_service.models.appointments import appointment_shadows
from reminder_service.models.base import metadata
from reminder_service.models.notifications import delivery_attempts, schedule_plans

__all__ = [
    "appointment_shadows",
    "delivery_attempts",
    "metadata",
    "schedule_plans",
]
