from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from datetime import datetime
import logging

from medqueue.config.constants import AppointmentStatus
from medqueue.core.middleware import get_credential, get_scheduler
from medqueue.schemas.appointment import Appointment, AppointmentCreate, AppointmentUpdate
from medqueue.schemas.shared import ErrorResponse
from medqueue.services.scheduler import Scheduler

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (400, 401, 404, 409, 422, 502)}

router = APIRouter(prefix="/appointments", tags=["appointments"], responses=ERROR_RESPONSES)


@router.post("/", response_model=Appointment, status_code=201)
async def create_appointment_route(
    appointment: AppointmentCreate,
    scheduler: Scheduler = Depends(get_scheduler),
    credential: Optional[str] = Depends(get_credential),
):
    """Book a 30-minute appointment"""
    return await scheduler.create(
        patient_id=appointment.patient_id,
        doctor_id=appointment.doctor_id,
        start_time=appointment.start_time,
        credential=credential,
    )


@router.get("/", response_model=List[Appointment])
async def get_appointments_route(
    date: Optional[str] = Query(None, description="Clinic-local day, YYYY-MM-DD"),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    status: Optional[AppointmentStatus] = None,
    skip: int = 0,
    limit: int = 100,
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Filter appointments"""
    return await scheduler.list_appointments(
        on_date=date,
        date_from=date_from,
        date_to=date_to,
        doctor_id=doctor_id,
        patient_id=patient_id,
        status=status,
        skip=skip,
        limit=limit,
    )


@router.get("/{appointment_id}", response_model=Appointment)
async def get_appointment_route(
    appointment_id: str,
    scheduler: Scheduler = Depends(get_scheduler),
):
    return await scheduler.get(appointment_id)


@router.put("/{appointment_id}", response_model=Appointment)
async def update_appointment_route(
    appointment_id: str,
    appointment_update: AppointmentUpdate,
    scheduler: Scheduler = Depends(get_scheduler),
    credential: Optional[str] = Depends(get_credential),
):
    """Reschedule, reassign or change the status of an appointment"""
    update_data = appointment_update.model_dump(exclude_unset=True)
    return await scheduler.update(appointment_id, update_data, credential)


@router.patch("/{appointment_id}/cancel", response_model=Appointment)
async def cancel_appointment_route(
    appointment_id: str,
    scheduler: Scheduler = Depends(get_scheduler),
):
    logger.info(f"Cancelling appointment {appointment_id}")
    return await scheduler.cancel(appointment_id)


@router.patch("/{appointment_id}/confirm", response_model=Appointment)
async def confirm_appointment_route(
    appointment_id: str,
    scheduler: Scheduler = Depends(get_scheduler),
    credential: Optional[str] = Depends(get_credential),
):
    return await scheduler.confirm(appointment_id, credential)
