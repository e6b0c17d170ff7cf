"""
One-pass lifecycle sweeps.

Each sweep evaluates a predicate from `medqueue.services.validation` and
calls the corresponding engine operation; how often they run is up to the
caller (see scripts/run_sweeps.py). A failing item is logged and skipped.
"""
import logging
from datetime import datetime
from typing import List, Optional, Protocol

from medqueue.config.constants import (
    AUTO_CHECK_IN_LEAD,
    REMINDER_LEAD,
    REMINDER_TOLERANCE,
    AppointmentStatus,
)
from medqueue.core.errors import SchedulingError
from medqueue.core.identity import DoctorIdentity, IdentityVerifier, PatientIdentity
from medqueue.services.queue import QueueEngine
from medqueue.services.scheduler import Scheduler
from medqueue.services.validation import (
    is_due_for_auto_check_in,
    is_due_for_reminder,
    is_missed,
    is_unanswered_call,
)

logger = logging.getLogger(__name__)


class ReminderNotifier(Protocol):
    async def send_reminder(self, appointment, patient: PatientIdentity, doctor: DoctorIdentity) -> bool: ...


class LoggingReminderNotifier:
    """Notifier used when no mail transport is configured."""

    async def send_reminder(self, appointment, patient: PatientIdentity, doctor: DoctorIdentity) -> bool:
        logger.info(
            f"Reminder for appointment {appointment.id}: {patient.email or patient.id} "
            f"with {doctor.fullname or doctor.id} at {appointment.start_time.isoformat()}"
        )
        return True


async def sweep_missed_appointments(scheduler: Scheduler, queue: QueueEngine, now: Optional[datetime] = None) -> List[str]:
    """SCHEDULED appointments nobody checked in for within the grace period."""
    now = now or scheduler.clock()
    candidates = await scheduler.list_appointments(
        status=AppointmentStatus.SCHEDULED, date_to=now - scheduler.policy.missed_grace
    )
    with_tickets = await queue.appointments_with_tickets([a.id for a in candidates], active_only=True)

    due = [
        a.id for a in candidates if is_missed(a, a.id in with_tickets, now, scheduler.policy)
    ]
    expired = []
    for appointment_id in due:
        try:
            await scheduler.expire(appointment_id)
            expired.append(appointment_id)
        except SchedulingError as e:
            logger.error(f"Missed-appointment sweep failed for {appointment_id}: {e.message}")
    if expired:
        logger.info(f"Missed-appointment sweep closed {len(expired)} appointments")
    return expired


async def sweep_unanswered_calls(scheduler: Scheduler, queue: QueueEngine, now: Optional[datetime] = None) -> List[str]:
    """Called patients who never came in become no-shows."""
    now = now or scheduler.clock()
    tickets = await queue.list_unanswered_calls(now - scheduler.policy.called_timeout)

    due = [t.appointment_id for t in tickets if is_unanswered_call(t, now, scheduler.policy)]
    no_shows = []
    for appointment_id in due:
        try:
            await scheduler.mark_no_show(appointment_id)
            no_shows.append(appointment_id)
        except SchedulingError as e:
            logger.error(f"No-show sweep failed for appointment {appointment_id}: {e.message}")
    if no_shows:
        logger.info(f"No-show sweep marked {len(no_shows)} appointments")
    return no_shows


async def sweep_auto_check_in(scheduler: Scheduler, queue: QueueEngine, now: Optional[datetime] = None) -> List[str]:
    """Put CONFIRMED patients whose appointment starts within 5 minutes in the queue."""
    now = now or scheduler.clock()
    candidates = await scheduler.list_appointments(
        status=AppointmentStatus.CONFIRMED, date_from=now, date_to=now + AUTO_CHECK_IN_LEAD
    )
    if not candidates:
        logger.debug("Auto check-in sweep: no upcoming confirmed appointments")
        return []
    ticketed = await queue.appointments_with_tickets([a.id for a in candidates])

    due = [a.id for a in candidates if is_due_for_auto_check_in(a, a.id in ticketed, now)]
    joined = []
    for appointment_id in due:
        try:
            check_in = await queue.join(appointment_id)
            joined.append(check_in.ticket.id)
            logger.info(f"Auto check-in: appointment {appointment_id} joined as #{check_in.ticket.queue_number}")
        except SchedulingError as e:
            logger.error(f"Auto check-in failed for appointment {appointment_id}: {e.message}")
    return joined


async def sweep_reminders(
    scheduler: Scheduler,
    identity: IdentityVerifier,
    notifier: ReminderNotifier,
    credential: Optional[str],
    now: Optional[datetime] = None,
) -> List[str]:
    """Send the 24h reminder once per appointment; the flag is only set on success."""
    now = now or scheduler.clock()
    target = now + REMINDER_LEAD
    candidates = await scheduler.list_appointments(
        status=AppointmentStatus.SCHEDULED,
        reminder_24h_sent=False,
        date_from=target - REMINDER_TOLERANCE,
        date_to=target + REMINDER_TOLERANCE,
    )
    if not candidates:
        logger.debug("Reminder sweep: no appointments due")
        return []

    doctors, patients = {}, {}
    sent = []
    for appointment in candidates:
        if not is_due_for_reminder(appointment, now):
            continue
        try:
            if appointment.doctor_id not in doctors:
                doctors[appointment.doctor_id] = await identity.get_doctor(appointment.doctor_id, credential)
            if appointment.patient_id not in patients:
                patients[appointment.patient_id] = await identity.get_patient(appointment.patient_id, credential)
        except SchedulingError as e:
            logger.warning(f"Reminder skipped for appointment {appointment.id}: {e.message}")
            continue

        patient = patients[appointment.patient_id]
        doctor = doctors[appointment.doctor_id]
        try:
            delivered = await notifier.send_reminder(appointment, patient, doctor)
        except Exception as e:
            logger.error(f"Reminder delivery raised for appointment {appointment.id}: {e}", exc_info=True)
            continue
        if not delivered:
            logger.error(f"Reminder delivery failed for appointment {appointment.id}")
            continue
        await scheduler.mark_reminder_sent(appointment.id)
        sent.append(appointment.id)
    if sent:
        logger.info(f"Reminder sweep sent {len(sent)} reminders")
    return sent
