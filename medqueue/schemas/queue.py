# medqueue/schemas/queue.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from medqueue.config.constants import QueueStatus


class JoinRequest(BaseModel):
    appointment_id: str


class CallNextRequest(BaseModel):
    doctor_id: str


class Ticket(BaseModel):
    id: str
    appointment_id: str
    patient_id: str
    doctor_id: str
    queue_number: int
    status: QueueStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CheckInResponse(BaseModel):
    message: str = "Checked in successfully. You have been added to the queue."
    ticket: Ticket
    estimated_wait_time_minutes: int


class DoctorQueue(BaseModel):
    doctor_id: str
    queue: List[Ticket]


class TicketPosition(BaseModel):
    ticket_id: str
    status: QueueStatus
    position: Optional[int] = None
    estimated_wait_time_minutes: int
    doctor_id: Optional[str] = None
    queue_number: Optional[int] = None
    message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
