"""
Scheduler: conflict detection and the appointment lifecycle.

Every public method runs in its own transaction (a SAVEPOINT when the caller
already holds one), so the overlap check and the write it guards are never
two independent steps.
"""
import logging
from datetime import datetime, date, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from medqueue.config.constants import (
    ACTIVE_QUEUE_STATUSES,
    TERMINAL_APPOINTMENT_STATUSES,
    AppointmentStatus,
    QueueStatus,
    Role,
)
from medqueue.core.errors import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from medqueue.core.identity import DoctorIdentity, IdentityVerifier, PatientIdentity
from medqueue.db.crud.appointment import AppointmentRepository
from medqueue.db.crud.queue import QueueTicketRepository
from medqueue.db.models.appointment import AppointmentModel
from medqueue.db.session import transaction
from medqueue.services.validation import (
    SchedulingPolicy,
    check_confirmation_window,
    end_time_for,
    ensure_appointment_transition,
    ensure_not_in_past,
    ensure_ticket_transition,
    is_missed,
    parse_date,
    parse_start_time,
    utcnow,
    validate_object_id,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"start_time", "status", "doctor_id"}
UNCONFIRMABLE = (
    AppointmentStatus.CANCELLED,
    AppointmentStatus.COMPLETED,
    AppointmentStatus.IN_PROGRESS,
    AppointmentStatus.NO_SHOW,
)


class Scheduler:
    def __init__(
        self,
        appointments: AppointmentRepository,
        tickets: QueueTicketRepository,
        identity: IdentityVerifier,
        policy: Optional[SchedulingPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.appointments = appointments
        self.tickets = tickets
        self.identity = identity
        self.policy = policy or SchedulingPolicy()
        self.clock = clock

    @property
    def session(self):
        return self.appointments.session

    # ------------------------------------------------------------------ #
    # Identity checks
    # ------------------------------------------------------------------ #
    async def verify_doctor(self, doctor_id: str, credential: Optional[str]) -> DoctorIdentity:
        validate_object_id(doctor_id, "doctor id")
        doctor = await self.identity.get_doctor(doctor_id, credential)
        if doctor.role != Role.doctor.value:
            raise ValidationError(f"User {doctor_id} is not a doctor")
        if not doctor.is_active:
            raise StateError(f"Doctor {doctor_id} is inactive")
        return doctor

    async def verify_patient(self, patient_id: str, credential: Optional[str]) -> PatientIdentity:
        validate_object_id(patient_id, "patient id")
        patient = await self.identity.get_patient(patient_id, credential)
        if patient.role != Role.patient.value:
            raise ValidationError(f"User {patient_id} is not a patient")
        if not patient.is_active:
            raise StateError(f"Patient {patient_id} is inactive")
        return patient

    async def _load(self, appointment_id: str, for_update: bool = True) -> AppointmentModel:
        if not appointment_id:
            raise ValidationError("Appointment id is required")
        appointment = await self.appointments.find_by_id(appointment_id, for_update=for_update)
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    async def _release_ticket(self, appointment: AppointmentModel) -> None:
        # A closed visit must not keep a place in the queue
        ticket = await self.tickets.find_by_appointment(appointment.id)
        if ticket is not None and ticket.status in ACTIVE_QUEUE_STATUSES:
            await self.tickets.set_status(ticket, QueueStatus.CANCELLED, self.clock())
            logger.info(f"Released queue ticket {ticket.id} of appointment {appointment.id}")

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    async def get(self, appointment_id: str) -> AppointmentModel:
        async with transaction(self.session):
            return await self._load(appointment_id, for_update=False)

    async def list_appointments(
        self,
        on_date: Union[str, date, None] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        status: Union[AppointmentStatus, Sequence[AppointmentStatus], None] = None,
        reminder_24h_sent: Optional[bool] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[AppointmentModel]:
        """
        Filter appointments. A single `on_date` is a clinic-local day and takes
        precedence over `date_from` / `date_to`.
        """
        if on_date is not None:
            day = parse_date(on_date)
            tz = self.policy.tz
            day_start = datetime.combine(day, time.min, tzinfo=tz)
            date_from = day_start
            date_to = day_start + timedelta(days=1) - timedelta(microseconds=1)
        if doctor_id is not None:
            validate_object_id(doctor_id, "doctor id")
        if patient_id is not None:
            validate_object_id(patient_id, "patient id")

        async with transaction(self.session):
            return await self.appointments.find_many(
                doctor_id=doctor_id,
                patient_id=patient_id,
                status=status,
                starts_from=date_from,
                starts_to=date_to,
                reminder_24h_sent=reminder_24h_sent,
                skip=skip,
                limit=limit,
            )

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    async def create(
        self,
        patient_id: str,
        doctor_id: str,
        start_time: Union[str, datetime],
        credential: Optional[str],
    ) -> AppointmentModel:
        validate_object_id(patient_id, "patient id")
        validate_object_id(doctor_id, "doctor id")
        start = parse_start_time(start_time)
        ensure_not_in_past(start, self.clock())

        await self.verify_doctor(doctor_id, credential)
        await self.verify_patient(patient_id, credential)

        async with transaction(self.session):
            appointment = await self.appointments.insert_if_no_overlap(
                AppointmentModel(
                    patient_id=patient_id,
                    doctor_id=doctor_id,
                    start_time=start,
                    end_time=end_time_for(start),
                    status=AppointmentStatus.SCHEDULED,
                )
            )
        logger.info(
            f"Created appointment {appointment.id} for patient {patient_id} with doctor {doctor_id} at {start}"
        )
        return appointment

    async def update(
        self,
        appointment_id: str,
        changes: Dict[str, Any],
        credential: Optional[str],
    ) -> AppointmentModel:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        new_start = None
        if changes.get("start_time") is not None:
            new_start = parse_start_time(changes["start_time"])
            ensure_not_in_past(new_start, self.clock())

        new_status = None
        if changes.get("status") is not None:
            try:
                new_status = AppointmentStatus(changes["status"])
            except ValueError:
                raise ValidationError(f"Unknown appointment status: {changes['status']!r}")

        new_doctor_id = changes.get("doctor_id")

        # Fail fast on unknown ids before calling the identity service
        await self.get(appointment_id)
        if new_doctor_id is not None:
            await self.verify_doctor(new_doctor_id, credential)

        async with transaction(self.session):
            appointment = await self._load(appointment_id)
            fields: Dict[str, Any] = {}

            doctor_id = new_doctor_id or appointment.doctor_id
            changes_doctor = bool(new_doctor_id) and new_doctor_id != appointment.doctor_id
            if changes_doctor:
                ticket = await self.tickets.find_by_appointment(appointment.id)
                if ticket is not None and ticket.status in ACTIVE_QUEUE_STATUSES:
                    raise StateError(
                        f"Appointment {appointment_id} is in doctor {appointment.doctor_id}'s queue "
                        f"(ticket {ticket.status.value}); it cannot move to another doctor"
                    )
            if new_start is not None or changes_doctor:
                start = new_start or appointment.start_time
                end = end_time_for(start)
                await self.appointments.ensure_no_overlap(
                    doctor_id, appointment.patient_id, start, end, exclude_id=appointment.id
                )
                fields.update(start_time=start, end_time=end, doctor_id=doctor_id)

            if new_status is not None and new_status != appointment.status:
                ensure_appointment_transition(appointment.status, new_status, self.policy)
                fields["status"] = new_status
                if new_status in TERMINAL_APPOINTMENT_STATUSES:
                    await self._release_ticket(appointment)

            if fields:
                appointment = await self.appointments.update(appointment, **fields)
        logger.info(f"Updated appointment {appointment_id}: {sorted(fields)}")
        return appointment

    async def cancel(self, appointment_id: str) -> AppointmentModel:
        async with transaction(self.session):
            appointment = await self._load(appointment_id)
            if appointment.status == AppointmentStatus.CANCELLED:
                raise ConflictError(f"Appointment {appointment_id} is already cancelled")
            ensure_appointment_transition(appointment.status, AppointmentStatus.CANCELLED, self.policy)
            await self._release_ticket(appointment)
            appointment = await self.appointments.update(appointment, status=AppointmentStatus.CANCELLED)
        logger.info(f"Cancelled appointment {appointment_id}")
        return appointment

    async def confirm(self, appointment_id: str, credential: Optional[str] = None) -> AppointmentModel:
        # No identity lookup; the credential is unused here
        async with transaction(self.session):
            appointment = await self._load(appointment_id)
            if appointment.status in UNCONFIRMABLE:
                raise StateError(
                    f"Cannot confirm an appointment that is {appointment.status.value}"
                )
            if appointment.status == AppointmentStatus.CONFIRMED:
                return appointment

            check_confirmation_window(appointment.start_time, self.clock())
            appointment = await self.appointments.update(appointment, status=AppointmentStatus.CONFIRMED)
        logger.info(f"Confirmed appointment {appointment_id}")
        return appointment

    async def mark_no_show(self, appointment_id: str) -> AppointmentModel:
        """Called patient never showed up: ticket CANCELLED, appointment NO_SHOW."""
        async with transaction(self.session):
            appointment = await self._load(appointment_id)
            ticket = await self.tickets.find_by_appointment(appointment.id)
            if ticket is None:
                raise NotFoundError(f"Appointment {appointment_id} has no queue ticket")
            if ticket.status != QueueStatus.CALLED:
                raise StateError(
                    f"Ticket {ticket.id} is {ticket.status.value}, only CALLED tickets can be marked no-show"
                )
            ensure_ticket_transition(ticket.status, QueueStatus.CANCELLED)
            ensure_appointment_transition(appointment.status, AppointmentStatus.NO_SHOW, self.policy)

            await self.tickets.set_status(ticket, QueueStatus.CANCELLED, self.clock())
            appointment = await self.appointments.update(appointment, status=AppointmentStatus.NO_SHOW)
        logger.info(f"Appointment {appointment_id} marked as no-show (ticket {ticket.id} cancelled)")
        return appointment

    async def expire(self, appointment_id: str) -> AppointmentModel:
        """Close a SCHEDULED appointment nobody checked in for."""
        now = self.clock()
        async with transaction(self.session):
            appointment = await self._load(appointment_id)
            ticket = await self.tickets.find_by_appointment(appointment.id)
            has_active = ticket is not None and ticket.status in ACTIVE_QUEUE_STATUSES
            if not is_missed(appointment, has_active, now, self.policy):
                raise StateError(f"Appointment {appointment_id} is not a missed appointment")

            target = self.policy.missed_status
            ensure_appointment_transition(appointment.status, target, self.policy)
            appointment = await self.appointments.update(appointment, status=target)
        logger.info(f"Appointment {appointment_id} expired as {target.value} (patient did not arrive)")
        return appointment

    async def mark_reminder_sent(self, appointment_id: str) -> AppointmentModel:
        async with transaction(self.session):
            appointment = await self._load(appointment_id)
            if not appointment.reminder_24h_sent:
                appointment = await self.appointments.update(appointment, reminder_24h_sent=True)
        return appointment

    async def rebook(
        self, source_id: str, patient_id: str, start_time: datetime, doctor_id: str
    ) -> AppointmentModel:
        """
        Book the same patient and window with another doctor.

        Used by the reassignment cascade: the candidate doctor was already
        vetted by the identity service and the window may already have begun,
        so only the overlap rules apply.
        """
        validate_object_id(doctor_id, "doctor id")
        async with transaction(self.session):
            appointment = await self.appointments.insert_if_no_overlap(
                AppointmentModel(
                    patient_id=patient_id,
                    doctor_id=doctor_id,
                    start_time=start_time,
                    end_time=end_time_for(start_time),
                    status=AppointmentStatus.SCHEDULED,
                )
            )
        logger.info(
            f"Rebooked appointment {source_id} as {appointment.id} with doctor {doctor_id}"
        )
        return appointment

    async def advance_for_queue(self, appointment_id: str, target: AppointmentStatus) -> AppointmentModel:
        """Status cascade triggered by a queue ticket moving forward."""
        async with transaction(self.session):
            appointment = await self._load(appointment_id)
            if appointment.status == target:
                return appointment
            ensure_appointment_transition(appointment.status, target, self.policy)
            return await self.appointments.update(appointment, status=target)
