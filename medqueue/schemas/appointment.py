# medqueue/schemas/appointment.py
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from medqueue.config.constants import AppointmentStatus


class AppointmentCreate(BaseModel):
    patient_id: str
    doctor_id: str
    # Strings are parsed by the scheduler so malformed dates surface as ValidationError
    start_time: Union[datetime, str]


class AppointmentUpdate(BaseModel):
    start_time: Optional[Union[datetime, str]] = None
    status: Optional[str] = None
    doctor_id: Optional[str] = None


class Appointment(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    reminder_24h_sent: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
