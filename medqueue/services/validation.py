"""
Shared validation and time-window predicates.

Everything here is pure: callers pass `now` explicitly so the engines and
the lifecycle sweeps evaluate the same rules against the same clock.
"""
import re
import logging
from dataclasses import dataclass
from datetime import datetime, date, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from medqueue.config.constants import (
    APPOINTMENT_DURATION,
    AUTO_CHECK_IN_LEAD,
    CONFIRM_MAX_LEAD,
    CONFIRM_MIN_LEAD,
    REMINDER_LEAD,
    REMINDER_TOLERANCE,
    AppointmentStatus,
    QueueStatus,
)
from medqueue.core.errors import StateError, ValidationError, WindowError

logger = logging.getLogger(__name__)

OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


@dataclass(frozen=True)
class SchedulingPolicy:
    """Clinic rules the engines evaluate; built from settings in production."""

    clinic_timezone: str = "America/Bogota"
    check_in_early: timedelta = timedelta(minutes=30)
    check_in_late: timedelta = timedelta(minutes=10)
    missed_grace: timedelta = timedelta(minutes=10)
    missed_status: AppointmentStatus = AppointmentStatus.CANCELLED
    called_timeout: timedelta = timedelta(minutes=10)
    allow_cancel_completed: bool = True

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.clinic_timezone)

    @classmethod
    def from_settings(cls, settings) -> "SchedulingPolicy":
        return cls(
            clinic_timezone=settings.clinic_timezone,
            check_in_early=timedelta(minutes=settings.check_in_early_minutes),
            check_in_late=timedelta(minutes=settings.check_in_late_minutes),
            missed_grace=timedelta(minutes=settings.missed_grace_minutes),
            missed_status=AppointmentStatus(settings.missed_appointment_status),
            called_timeout=timedelta(minutes=settings.called_timeout_minutes),
            allow_cancel_completed=settings.allow_cancel_completed,
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_object_id(value: Optional[str], field_name: str) -> str:
    if not value or not OBJECT_ID_RE.match(str(value)):
        raise ValidationError(f"Invalid {field_name}: {value!r}")
    return str(value)


def ensure_utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def parse_start_time(value: Union[str, datetime, None]) -> datetime:
    """Accept an ISO-8601 string or datetime; naive values are taken as UTC."""
    if value is None:
        raise ValidationError("start_time is required")
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid start_time: {value!r}")
    return ensure_utc(parsed)


def parse_date(value: Union[str, date]) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}")


def end_time_for(start_time: datetime) -> datetime:
    return start_time + APPOINTMENT_DURATION


def ensure_not_in_past(start_time: datetime, now: datetime) -> None:
    if start_time < now:
        raise ValidationError("Appointment start_time cannot be in the past")


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


# --------------------------------------------------------------------------- #
# Time windows
# --------------------------------------------------------------------------- #
def check_confirmation_window(start_time: datetime, now: datetime) -> None:
    """Confirmation is allowed iff 10min <= start - now <= 24h (inclusive)."""
    lead = start_time - now
    if lead < CONFIRM_MIN_LEAD:
        raise WindowError(
            "Too late to confirm: confirmation closes 10 minutes before the appointment"
        )
    if lead > CONFIRM_MAX_LEAD:
        raise WindowError(
            "Too early to confirm: confirmation opens 24 hours before the appointment"
        )


def is_same_clinic_day(start_time: datetime, now: datetime, policy: SchedulingPolicy) -> bool:
    tz = policy.tz
    return start_time.astimezone(tz).date() == now.astimezone(tz).date()


def check_check_in_window(start_time: datetime, now: datetime, policy: SchedulingPolicy) -> None:
    if not is_same_clinic_day(start_time, now, policy):
        raise WindowError("The appointment is not for today")

    opens_at = start_time - policy.check_in_early
    if now < opens_at:
        minutes_left = -(-(opens_at - now) // timedelta(minutes=1))
        raise WindowError(
            f"Too early to check in: check-in opens {int(policy.check_in_early.total_seconds() // 60)} "
            f"minutes before the appointment, in {minutes_left} minute(s)"
        )
    if now > start_time + policy.check_in_late:
        raise WindowError("Too late to check in: the appointment was missed, please book a new one")


# --------------------------------------------------------------------------- #
# Status transitions
# --------------------------------------------------------------------------- #
APPOINTMENT_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.IN_PROGRESS: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.NO_SHOW: set(),
}

TICKET_TRANSITIONS = {
    QueueStatus.WAITING: {QueueStatus.CALLED, QueueStatus.CANCELLED},
    QueueStatus.CALLED: {QueueStatus.IN_PROGRESS, QueueStatus.COMPLETED, QueueStatus.CANCELLED},
    QueueStatus.IN_PROGRESS: {QueueStatus.COMPLETED, QueueStatus.CANCELLED},
    QueueStatus.COMPLETED: set(),
    QueueStatus.CANCELLED: set(),
}


def ensure_appointment_transition(
    current: AppointmentStatus,
    target: AppointmentStatus,
    policy: Optional[SchedulingPolicy] = None,
) -> None:
    allowed = APPOINTMENT_TRANSITIONS[current]
    if target in allowed:
        return
    # Cancelling a finished visit is a clinic policy decision
    if (
        target == AppointmentStatus.CANCELLED
        and current in (AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW)
        and policy is not None
        and policy.allow_cancel_completed
    ):
        return
    raise StateError(
        f"Appointment cannot move from {current.value} to {target.value}"
    )


def ensure_ticket_transition(current: QueueStatus, target: QueueStatus) -> None:
    if target not in TICKET_TRANSITIONS[current]:
        raise StateError(f"Ticket cannot move from {current.value} to {target.value}")


# --------------------------------------------------------------------------- #
# Sweep predicates
# --------------------------------------------------------------------------- #
def is_missed(appointment, has_active_ticket: bool, now: datetime, policy: SchedulingPolicy) -> bool:
    return (
        appointment.status == AppointmentStatus.SCHEDULED
        and not has_active_ticket
        and now > appointment.start_time + policy.missed_grace
    )


def is_unanswered_call(ticket, now: datetime, policy: SchedulingPolicy) -> bool:
    return ticket.status == QueueStatus.CALLED and now - ticket.updated_at > policy.called_timeout


def is_due_for_auto_check_in(appointment, has_ticket: bool, now: datetime) -> bool:
    return (
        appointment.status == AppointmentStatus.CONFIRMED
        and not has_ticket
        and now <= appointment.start_time <= now + AUTO_CHECK_IN_LEAD
    )


def is_due_for_reminder(appointment, now: datetime) -> bool:
    target = now + REMINDER_LEAD
    return (
        appointment.status == AppointmentStatus.SCHEDULED
        and not appointment.reminder_24h_sent
        and target - REMINDER_TOLERANCE <= appointment.start_time <= target + REMINDER_TOLERANCE
    )
