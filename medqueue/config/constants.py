from datetime import timedelta
from enum import Enum


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class QueueStatus(str, Enum):
    WAITING = "WAITING"
    CALLED = "CALLED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class IdentityStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class Role(str, Enum):
    doctor = "doctor"
    patient = "patient"


APPOINTMENT_DURATION = timedelta(minutes=30)
AVERAGE_APPOINTMENT_DURATION_MINUTES = 30

# Confirmation is only accepted inside [start - 24h, start - 10min]
CONFIRM_MIN_LEAD = timedelta(minutes=10)
CONFIRM_MAX_LEAD = timedelta(hours=24)

AUTO_CHECK_IN_LEAD = timedelta(minutes=5)
REMINDER_LEAD = timedelta(hours=24)
REMINDER_TOLERANCE = timedelta(minutes=3)

TERMINAL_APPOINTMENT_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)
ACTIVE_QUEUE_STATUSES = (QueueStatus.WAITING, QueueStatus.CALLED, QueueStatus.IN_PROGRESS)
SERVING_QUEUE_STATUSES = (QueueStatus.CALLED, QueueStatus.IN_PROGRESS)
REASSIGNABLE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.IN_PROGRESS)
