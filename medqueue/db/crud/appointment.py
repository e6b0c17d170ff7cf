import logging
from datetime import datetime
from typing import List, Optional, Sequence, Union

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from medqueue.config.constants import AppointmentStatus
from medqueue.core.errors import ConflictError
from medqueue.db.models.appointment import AppointmentModel

logger = logging.getLogger(__name__)

StatusFilter = Union[AppointmentStatus, Sequence[AppointmentStatus], None]


class AppointmentRepository:
    """
    Appointment persistence over an AsyncSession.

    The repository never commits: callers wrap each operation in
    `medqueue.db.session.transaction` so the overlap check and the write
    it guards land in the same transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_id(self, appointment_id: str, for_update: bool = False) -> Optional[AppointmentModel]:
        stmt = select(AppointmentModel).where(AppointmentModel.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_overlapping(
        self,
        start_time: datetime,
        end_time: datetime,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        exclude_id: Optional[str] = None,
    ) -> List[AppointmentModel]:
        """Non-cancelled appointments of the doctor OR the patient intersecting [start, end)."""
        owners = []
        if doctor_id is not None:
            owners.append(AppointmentModel.doctor_id == doctor_id)
        if patient_id is not None:
            owners.append(AppointmentModel.patient_id == patient_id)
        if not owners:
            return []

        conditions = [
            AppointmentModel.status != AppointmentStatus.CANCELLED,
            AppointmentModel.start_time < end_time,  # existing one starts before the new one ends
            AppointmentModel.end_time > start_time,  # existing one ends after the new one starts
            or_(*owners),
        ]
        if exclude_id is not None:
            conditions.append(AppointmentModel.id != exclude_id)

        stmt = (
            select(AppointmentModel)
            .where(and_(*conditions))
            .order_by(AppointmentModel.start_time)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def ensure_no_overlap(
        self,
        doctor_id: str,
        patient_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_id: Optional[str] = None,
    ) -> None:
        conflicts = await self.find_overlapping(
            start_time, end_time, doctor_id=doctor_id, patient_id=patient_id, exclude_id=exclude_id
        )
        if not conflicts:
            return
        if any(c.doctor_id == doctor_id for c in conflicts):
            clash = next(c for c in conflicts if c.doctor_id == doctor_id)
            logger.warning(
                f"CRUD: Scheduling conflict for doctor_id={doctor_id} at {start_time}. "
                f"Conflicts with appointment_id={clash.id}"
            )
            raise ConflictError("The doctor already has an appointment in that time slot")
        clash = conflicts[0]
        logger.warning(
            f"CRUD: Scheduling conflict for patient_id={patient_id} at {start_time}. "
            f"Conflicts with appointment_id={clash.id}"
        )
        raise ConflictError("The patient already has an appointment in that time slot")

    async def _flush(self, what: str) -> None:
        try:
            await self.session.flush()
        except IntegrityError as e:  # exclusion constraint raced us
            logger.warning(f"CRUD: Integrity error while {what}: {e.orig}")
            raise ConflictError(
                "A conflicting appointment was booked at the same time. Please try a different time."
            )

    async def insert_if_no_overlap(self, appointment: AppointmentModel) -> AppointmentModel:
        await self.ensure_no_overlap(
            appointment.doctor_id,
            appointment.patient_id,
            appointment.start_time,
            appointment.end_time,
        )
        self.session.add(appointment)
        await self._flush("inserting appointment")
        await self.session.refresh(appointment)
        return appointment

    async def update(self, appointment: AppointmentModel, **fields) -> AppointmentModel:
        for key, value in fields.items():
            setattr(appointment, key, value)
        await self._flush(f"updating appointment {appointment.id}")
        await self.session.refresh(appointment)
        return appointment

    async def find_many(
        self,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        status: StatusFilter = None,
        starts_from: Optional[datetime] = None,
        starts_to: Optional[datetime] = None,
        reminder_24h_sent: Optional[bool] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[AppointmentModel]:
        query = select(AppointmentModel)

        if doctor_id is not None:
            query = query.where(AppointmentModel.doctor_id == doctor_id)
        if patient_id is not None:
            query = query.where(AppointmentModel.patient_id == patient_id)
        if status is not None:
            if isinstance(status, AppointmentStatus):
                query = query.where(AppointmentModel.status == status)
            else:
                query = query.where(AppointmentModel.status.in_(list(status)))
        if starts_from is not None:
            query = query.where(AppointmentModel.start_time >= starts_from)
        if starts_to is not None:
            query = query.where(AppointmentModel.start_time <= starts_to)
        if reminder_24h_sent is not None:
            query = query.where(AppointmentModel.reminder_24h_sent == reminder_24h_sent)

        query = query.order_by(AppointmentModel.start_time).offset(skip)
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query)
        appointments = list(result.scalars().all())
        logger.debug(f"CRUD find_many: {len(appointments)} appointments matched")
        return appointments
