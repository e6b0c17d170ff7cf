"""
Queue engine: check-in tickets, call-next / complete protocol and
position estimates.

Ticket changes that drag the appointment along (call -> IN_PROGRESS,
completion -> COMPLETED) run in a single transaction with the appointment
write, so a failed cascade rolls the ticket back as well.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from medqueue.config.constants import (
    AVERAGE_APPOINTMENT_DURATION_MINUTES,
    SERVING_QUEUE_STATUSES,
    TERMINAL_APPOINTMENT_STATUSES,
    AppointmentStatus,
    QueueStatus,
)
from medqueue.core.errors import ConflictError, NotFoundError, StateError, ValidationError
from medqueue.db.crud.appointment import AppointmentRepository
from medqueue.db.crud.queue import QueueTicketRepository
from medqueue.db.models.queue import QueueTicketModel
from medqueue.db.session import transaction
from medqueue.services.scheduler import Scheduler
from medqueue.services.validation import (
    SchedulingPolicy,
    check_check_in_window,
    ensure_ticket_transition,
    utcnow,
    validate_object_id,
)

logger = logging.getLogger(__name__)


@dataclass
class CheckIn:
    ticket: QueueTicketModel
    estimated_wait_time_minutes: int


@dataclass
class TicketPosition:
    ticket_id: str
    status: QueueStatus
    position: Optional[int]
    estimated_wait_time_minutes: int
    doctor_id: Optional[str] = None
    queue_number: Optional[int] = None
    message: Optional[str] = None


def _wait_for(patients_ahead: int) -> int:
    return patients_ahead * AVERAGE_APPOINTMENT_DURATION_MINUTES


class QueueEngine:
    def __init__(
        self,
        tickets: QueueTicketRepository,
        appointments: AppointmentRepository,
        scheduler: Scheduler,
        policy: Optional[SchedulingPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tickets = tickets
        self.appointments = appointments
        self.scheduler = scheduler
        self.policy = policy or scheduler.policy
        self.clock = clock

    @property
    def session(self):
        return self.tickets.session

    async def _load_ticket(self, ticket_id: str, for_update: bool = True) -> QueueTicketModel:
        if not ticket_id:
            raise ValidationError("Ticket id is required")
        ticket = await self.tickets.find_by_id(ticket_id, for_update=for_update)
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def join(self, appointment_id: str) -> CheckIn:
        """Check a patient in for today's appointment and hand out a queue number."""
        if not appointment_id:
            raise ValidationError("Appointment id is required")
        now = self.clock()

        async with transaction(self.session):
            appointment = await self.appointments.find_by_id(appointment_id, for_update=True)
            if appointment is None:
                raise NotFoundError(f"Appointment {appointment_id} not found")
            if appointment.status == AppointmentStatus.CANCELLED:
                raise StateError("The appointment is cancelled")
            if appointment.status in TERMINAL_APPOINTMENT_STATUSES:
                raise StateError(f"The appointment is already {appointment.status.value}")

            check_check_in_window(appointment.start_time, now, self.policy)

            if await self.tickets.find_by_appointment(appointment.id) is not None:
                raise ConflictError("Already checked in for this appointment")
            if await self.tickets.find_active_for_patient(appointment.patient_id, appointment.doctor_id):
                raise ConflictError("The patient already has an active ticket in this doctor's queue")

            queue_number = await self.tickets.next_queue_number(appointment.doctor_id)
            ticket = await self.tickets.insert(
                QueueTicketModel(
                    appointment_id=appointment.id,
                    patient_id=appointment.patient_id,
                    doctor_id=appointment.doctor_id,
                    queue_number=queue_number,
                    status=QueueStatus.WAITING,
                    created_at=now,
                    updated_at=now,
                )
            )
            ahead = await self.tickets.count_waiting_ahead(ticket.doctor_id, queue_number)

        logger.info(
            f"Patient {ticket.patient_id} checked in for appointment {appointment_id}: "
            f"ticket #{queue_number} with doctor {ticket.doctor_id}"
        )
        return CheckIn(ticket=ticket, estimated_wait_time_minutes=_wait_for(ahead))

    async def get_current_queue_by_doctor(self, doctor_id: str) -> List[QueueTicketModel]:
        validate_object_id(doctor_id, "doctor id")
        async with transaction(self.session):
            queue = await self.tickets.find_active_by_doctor(doctor_id)
        if not queue:
            raise NotFoundError(f"No patients are currently in the queue for doctor {doctor_id}")
        return queue

    async def call_next(self, doctor_id: str) -> QueueTicketModel:
        validate_object_id(doctor_id, "doctor id")
        now = self.clock()

        async with transaction(self.session):
            serving = await self.tickets.find_serving(doctor_id)
            if serving is not None:
                raise ConflictError(
                    f"Ticket #{serving.queue_number} is still {serving.status.value}; "
                    "complete it before calling the next patient"
                )

            ticket = await self.tickets.find_next_waiting(doctor_id)
            if ticket is None:
                raise NotFoundError("No patients are waiting")

            ensure_ticket_transition(ticket.status, QueueStatus.CALLED)
            ticket = await self.tickets.set_status(ticket, QueueStatus.CALLED, now)
            await self.scheduler.advance_for_queue(ticket.appointment_id, AppointmentStatus.IN_PROGRESS)

        logger.info(f"Doctor {doctor_id} called ticket #{ticket.queue_number} ({ticket.id})")
        return ticket

    async def start_service(self, ticket_id: str) -> QueueTicketModel:
        """The called patient answered: CALLED -> IN_PROGRESS."""
        async with transaction(self.session):
            ticket = await self._load_ticket(ticket_id)
            ensure_ticket_transition(ticket.status, QueueStatus.IN_PROGRESS)
            ticket = await self.tickets.set_status(ticket, QueueStatus.IN_PROGRESS, self.clock())
            await self.scheduler.advance_for_queue(ticket.appointment_id, AppointmentStatus.IN_PROGRESS)
        logger.info(f"Ticket {ticket_id} is now being served")
        return ticket

    async def complete_ticket(self, ticket_id: str) -> QueueTicketModel:
        async with transaction(self.session):
            ticket = await self._load_ticket(ticket_id)
            if ticket.status not in SERVING_QUEUE_STATUSES:
                raise StateError(
                    f"Only CALLED or IN_PROGRESS tickets can be completed (ticket is {ticket.status.value})"
                )
            ticket = await self.tickets.set_status(ticket, QueueStatus.COMPLETED, self.clock())
            await self.scheduler.advance_for_queue(ticket.appointment_id, AppointmentStatus.COMPLETED)
        logger.info(f"Ticket {ticket_id} completed")
        return ticket

    async def get_ticket(self, ticket_id: str) -> QueueTicketModel:
        async with transaction(self.session):
            return await self._load_ticket(ticket_id, for_update=False)

    async def get_ticket_position(self, ticket_id: str) -> TicketPosition:
        async with transaction(self.session):
            ticket = await self._load_ticket(ticket_id, for_update=False)
            if ticket.status in (QueueStatus.COMPLETED, QueueStatus.CANCELLED):
                return TicketPosition(
                    ticket_id=ticket.id,
                    status=ticket.status,
                    position=None,
                    estimated_wait_time_minutes=0,
                    message="The ticket was already completed or cancelled",
                )
            ahead = await self.tickets.count_waiting_ahead(ticket.doctor_id, ticket.queue_number)

        return TicketPosition(
            ticket_id=ticket.id,
            status=ticket.status,
            position=ahead + 1,
            estimated_wait_time_minutes=_wait_for(ahead),
            doctor_id=ticket.doctor_id,
            queue_number=ticket.queue_number,
        )

    async def list_unanswered_calls(self, cutoff: datetime) -> List[QueueTicketModel]:
        async with transaction(self.session):
            return await self.tickets.find_called_before(cutoff)

    async def appointments_with_tickets(self, appointment_ids: List[str], active_only: bool = False) -> set:
        async with transaction(self.session):
            return await self.tickets.appointment_ids_with_tickets(appointment_ids, active_only=active_only)
