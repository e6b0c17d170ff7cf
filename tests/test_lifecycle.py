# tests/test_lifecycle.py
from dataclasses import replace
from datetime import timedelta

from medqueue.config.constants import AppointmentStatus, QueueStatus
from medqueue.core.errors import UpstreamError
from medqueue.db.crud.appointment import AppointmentRepository
from medqueue.db.crud.queue import QueueTicketRepository
from medqueue.services.lifecycle import (
    LoggingReminderNotifier,
    sweep_auto_check_in,
    sweep_missed_appointments,
    sweep_reminders,
    sweep_unanswered_calls,
)
from medqueue.services.queue import QueueEngine
from medqueue.services.scheduler import Scheduler
from tests._stubs import DOCTOR_ID, OTHER_DOCTOR_ID, OTHER_PATIENT_ID, PATIENT_ID, RecordingNotifier


# --------------------------------------------------------------------------- #
# Missed appointments
# --------------------------------------------------------------------------- #
async def test_missed_appointment_is_closed_after_grace(scheduler, queue, book, clock):
    appointment_id = await book(0)

    clock.advance(minutes=10)
    assert await sweep_missed_appointments(scheduler, queue) == []

    clock.advance(minutes=1)
    assert await sweep_missed_appointments(scheduler, queue) == [appointment_id]
    assert (await scheduler.get(appointment_id)).status == AppointmentStatus.CANCELLED


async def test_checked_in_patients_are_not_missed(scheduler, queue, book, clock):
    appointment_id = await book(0)
    await queue.join(appointment_id)

    clock.advance(minutes=30)
    assert await sweep_missed_appointments(scheduler, queue) == []


async def test_confirmed_appointments_are_not_missed(scheduler, queue, book, clock):
    appointment_id = await book(60)
    await scheduler.confirm(appointment_id)

    clock.advance(minutes=90)
    assert await sweep_missed_appointments(scheduler, queue) == []


async def test_missed_status_is_configurable(session, identity, policy, clock, book):
    no_show_policy = replace(policy, missed_status=AppointmentStatus.NO_SHOW)
    scheduler = Scheduler(
        AppointmentRepository(session),
        QueueTicketRepository(session),
        identity,
        policy=no_show_policy,
        clock=clock,
    )
    queue = QueueEngine(scheduler.tickets, scheduler.appointments, scheduler, clock=clock)
    appointment_id = await book(0)

    clock.advance(minutes=15)
    await sweep_missed_appointments(scheduler, queue)
    assert (await scheduler.get(appointment_id)).status == AppointmentStatus.NO_SHOW


# --------------------------------------------------------------------------- #
# Unanswered calls
# --------------------------------------------------------------------------- #
async def test_unanswered_call_becomes_no_show(scheduler, queue, book, clock):
    appointment_id = await book(0)
    check_in = await queue.join(appointment_id)
    ticket_id = check_in.ticket.id
    await queue.call_next(DOCTOR_ID)

    clock.advance(minutes=5)
    assert await sweep_unanswered_calls(scheduler, queue) == []

    clock.advance(minutes=6)
    assert await sweep_unanswered_calls(scheduler, queue) == [appointment_id]
    assert (await scheduler.get(appointment_id)).status == AppointmentStatus.NO_SHOW
    assert (await queue.get_ticket(ticket_id)).status == QueueStatus.CANCELLED


async def test_answered_call_is_left_alone(scheduler, queue, book, clock):
    appointment_id = await book(0)
    await queue.join(appointment_id)
    called = await queue.call_next(DOCTOR_ID)
    await queue.start_service(called.id)

    clock.advance(minutes=25)
    assert await sweep_unanswered_calls(scheduler, queue) == []


async def test_no_show_frees_the_doctor(scheduler, queue, book, clock):
    await queue.join(await book(0))
    await queue.join(await book(30, patient_id=OTHER_PATIENT_ID))
    await queue.call_next(DOCTOR_ID)

    clock.advance(minutes=11)
    await sweep_unanswered_calls(scheduler, queue)

    following = await queue.call_next(DOCTOR_ID)
    assert following.queue_number == 2


# --------------------------------------------------------------------------- #
# Automatic check-in
# --------------------------------------------------------------------------- #
async def test_confirmed_patients_are_checked_in(scheduler, queue, book, clock):
    appointment_id = await book(60)
    await scheduler.confirm(appointment_id)

    clock.advance(minutes=54)
    assert await sweep_auto_check_in(scheduler, queue) == []

    clock.advance(minutes=3)
    [ticket_id] = await sweep_auto_check_in(scheduler, queue)
    ticket = await queue.get_ticket(ticket_id)
    assert ticket.appointment_id == appointment_id
    assert ticket.queue_number == 1

    # Idempotent: the appointment already has a ticket
    assert await sweep_auto_check_in(scheduler, queue) == []


async def test_scheduled_patients_are_not_checked_in(scheduler, queue, book, clock):
    await book(60)
    clock.advance(minutes=57)
    assert await sweep_auto_check_in(scheduler, queue) == []


# --------------------------------------------------------------------------- #
# Reminders
# --------------------------------------------------------------------------- #
async def test_reminder_sent_once(scheduler, identity, book):
    due = await book(24 * 60 + 2)
    await book(24 * 60 + 40, patient_id=OTHER_PATIENT_ID)
    notifier = RecordingNotifier()

    assert await sweep_reminders(scheduler, identity, notifier, credential=None) == [due]
    assert (await scheduler.get(due)).reminder_24h_sent is True
    assert await sweep_reminders(scheduler, identity, notifier, credential=None) == []
    assert len(notifier.sent) == 1


async def test_failed_delivery_keeps_the_flag_clear(scheduler, identity, book):
    due = await book(24 * 60)

    assert await sweep_reminders(scheduler, identity, RecordingNotifier(succeed=False), None) == []
    assert (await scheduler.get(due)).reminder_24h_sent is False


async def test_raising_notifier_does_not_stop_the_sweep(scheduler, identity, book):
    broken = await book(24 * 60)
    delivered = await book(24 * 60 + 2, doctor_id=OTHER_DOCTOR_ID, patient_id=OTHER_PATIENT_ID)
    notifier = RecordingNotifier(broken_for=[PATIENT_ID])

    assert await sweep_reminders(scheduler, identity, notifier, None) == [delivered]
    assert (await scheduler.get(broken)).reminder_24h_sent is False
    assert (await scheduler.get(delivered)).reminder_24h_sent is True


async def test_identity_outage_skips_reminders(scheduler, identity, book):
    due = await book(24 * 60)
    identity.fail_with = UpstreamError("Identity service timed out while verifying the doctor")

    assert await sweep_reminders(scheduler, identity, RecordingNotifier(), None) == []
    identity.fail_with = None
    assert (await scheduler.get(due)).reminder_24h_sent is False


async def test_logging_notifier(scheduler, identity, book, clock):
    await book(24 * 60)
    sent = await sweep_reminders(scheduler, identity, LoggingReminderNotifier(), None, now=clock.now)
    assert len(sent) == 1


async def test_reminder_window_uses_explicit_now(scheduler, identity, book, clock):
    appointment_id = await book(48 * 60)
    later = clock.now + timedelta(hours=24)
    assert await sweep_reminders(scheduler, identity, RecordingNotifier(), None, now=later) == [appointment_id]
