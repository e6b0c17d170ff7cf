from fastapi import APIRouter, Depends
import logging

from medqueue.core.middleware import get_queue_engine
from medqueue.schemas.queue import (
    CallNextRequest,
    CheckInResponse,
    DoctorQueue,
    JoinRequest,
    Ticket,
    TicketPosition,
)
from medqueue.schemas.shared import ErrorResponse
from medqueue.services.queue import QueueEngine

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/queue",
    tags=["queue"],
    responses={code: {"model": ErrorResponse} for code in (400, 404, 409, 422)},
)


@router.post("/join", response_model=CheckInResponse, status_code=201)
async def join_queue_route(
    body: JoinRequest,
    queue: QueueEngine = Depends(get_queue_engine),
):
    """Patient check-in at the clinic"""
    check_in = await queue.join(body.appointment_id)
    return CheckInResponse(
        ticket=Ticket.model_validate(check_in.ticket),
        estimated_wait_time_minutes=check_in.estimated_wait_time_minutes,
    )


@router.get("/doctor/{doctor_id}/current", response_model=DoctorQueue)
async def current_queue_route(
    doctor_id: str,
    queue: QueueEngine = Depends(get_queue_engine),
):
    tickets = await queue.get_current_queue_by_doctor(doctor_id)
    return DoctorQueue(doctor_id=doctor_id, queue=[Ticket.model_validate(t) for t in tickets])


@router.post("/call-next", response_model=Ticket)
async def call_next_route(
    body: CallNextRequest,
    queue: QueueEngine = Depends(get_queue_engine),
):
    return await queue.call_next(body.doctor_id)


@router.put("/ticket/{ticket_id}/start", response_model=Ticket)
async def start_ticket_route(
    ticket_id: str,
    queue: QueueEngine = Depends(get_queue_engine),
):
    return await queue.start_service(ticket_id)


@router.put("/ticket/{ticket_id}/complete", response_model=Ticket)
async def complete_ticket_route(
    ticket_id: str,
    queue: QueueEngine = Depends(get_queue_engine),
):
    return await queue.complete_ticket(ticket_id)


@router.get("/ticket/{ticket_id}/position", response_model=TicketPosition)
async def ticket_position_route(
    ticket_id: str,
    queue: QueueEngine = Depends(get_queue_engine),
):
    return TicketPosition.model_validate(await queue.get_ticket_position(ticket_id))
