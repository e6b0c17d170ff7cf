import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from medqueue.config.constants import ACTIVE_QUEUE_STATUSES, SERVING_QUEUE_STATUSES, QueueStatus
from medqueue.core.errors import ConflictError
from medqueue.db.models.queue import QueueCounterModel, QueueTicketModel

logger = logging.getLogger(__name__)


class QueueTicketRepository:
    """Queue ticket persistence; like AppointmentRepository it never commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_id(self, ticket_id: str, for_update: bool = False) -> Optional[QueueTicketModel]:
        stmt = select(QueueTicketModel).where(QueueTicketModel.id == ticket_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_by_appointment(self, appointment_id: str) -> Optional[QueueTicketModel]:
        result = await self.session.execute(
            select(QueueTicketModel).where(QueueTicketModel.appointment_id == appointment_id)
        )
        return result.scalars().first()

    async def find_active_by_doctor(self, doctor_id: str) -> List[QueueTicketModel]:
        result = await self.session.execute(
            select(QueueTicketModel)
            .where(
                QueueTicketModel.doctor_id == doctor_id,
                QueueTicketModel.status.in_(ACTIVE_QUEUE_STATUSES),
            )
            .order_by(QueueTicketModel.queue_number.asc())
        )
        return list(result.scalars().all())

    async def find_active_for_patient(self, patient_id: str, doctor_id: str) -> Optional[QueueTicketModel]:
        result = await self.session.execute(
            select(QueueTicketModel).where(
                QueueTicketModel.patient_id == patient_id,
                QueueTicketModel.doctor_id == doctor_id,
                QueueTicketModel.status.in_(ACTIVE_QUEUE_STATUSES),
            )
        )
        return result.scalars().first()

    async def find_serving(self, doctor_id: str) -> Optional[QueueTicketModel]:
        """The ticket currently CALLED or IN_PROGRESS for the doctor, most recent first."""
        result = await self.session.execute(
            select(QueueTicketModel)
            .where(
                QueueTicketModel.doctor_id == doctor_id,
                QueueTicketModel.status.in_(SERVING_QUEUE_STATUSES),
            )
            .order_by(QueueTicketModel.updated_at.desc())
            .with_for_update()
        )
        return result.scalars().first()

    async def find_next_waiting(self, doctor_id: str) -> Optional[QueueTicketModel]:
        result = await self.session.execute(
            select(QueueTicketModel)
            .where(
                QueueTicketModel.doctor_id == doctor_id,
                QueueTicketModel.status == QueueStatus.WAITING,
            )
            .order_by(QueueTicketModel.queue_number.asc())
            .limit(1)
            .with_for_update()
        )
        return result.scalars().first()

    async def count_waiting_ahead(self, doctor_id: str, queue_number: int) -> int:
        result = await self.session.execute(
            select(func.count(QueueTicketModel.id)).where(
                QueueTicketModel.doctor_id == doctor_id,
                QueueTicketModel.status == QueueStatus.WAITING,
                QueueTicketModel.queue_number < queue_number,
            )
        )
        return result.scalar_one()

    async def find_called_before(self, cutoff: datetime) -> List[QueueTicketModel]:
        result = await self.session.execute(
            select(QueueTicketModel)
            .where(
                QueueTicketModel.status == QueueStatus.CALLED,
                QueueTicketModel.updated_at < cutoff,
            )
            .order_by(QueueTicketModel.updated_at.asc())
        )
        return list(result.scalars().all())

    async def appointment_ids_with_tickets(self, appointment_ids: List[str], active_only: bool = False) -> set:
        if not appointment_ids:
            return set()
        stmt = select(QueueTicketModel.appointment_id).where(
            QueueTicketModel.appointment_id.in_(appointment_ids)
        )
        if active_only:
            stmt = stmt.where(QueueTicketModel.status.in_(ACTIVE_QUEUE_STATUSES))
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def next_queue_number(self, doctor_id: str) -> int:
        """
        Hand out `1 + max(active queue numbers)` for the doctor.

        The doctor's counter row is locked first, so concurrent joins for the
        same doctor serialize here instead of reading the same maximum.
        """
        counter = await self._lock_counter(doctor_id)

        result = await self.session.execute(
            select(func.max(QueueTicketModel.queue_number)).where(
                QueueTicketModel.doctor_id == doctor_id,
                QueueTicketModel.status.in_(ACTIVE_QUEUE_STATUSES),
            )
        )
        current_max = result.scalar_one_or_none() or 0
        number = current_max + 1
        counter.last_number = number
        await self.session.flush()
        return number

    async def _lock_counter(self, doctor_id: str) -> QueueCounterModel:
        stmt = (
            select(QueueCounterModel)
            .where(QueueCounterModel.doctor_id == doctor_id)
            .with_for_update()
        )
        counter = (await self.session.execute(stmt)).scalars().first()
        if counter is not None:
            return counter

        try:
            async with self.session.begin_nested():
                self.session.add(QueueCounterModel(doctor_id=doctor_id, last_number=0))
        except IntegrityError:
            # Another join created the row first; fall through and lock theirs
            logger.debug(f"CRUD: queue counter for doctor {doctor_id} created concurrently")
        return (await self.session.execute(stmt)).scalars().one()

    async def insert(self, ticket: QueueTicketModel) -> QueueTicketModel:
        self.session.add(ticket)
        await self._flush("inserting queue ticket")
        await self.session.refresh(ticket)
        return ticket

    async def set_status(self, ticket: QueueTicketModel, status: QueueStatus, now: datetime) -> QueueTicketModel:
        ticket.status = status
        ticket.updated_at = now
        await self._flush(f"updating queue ticket {ticket.id}")
        return ticket

    async def _flush(self, what: str) -> None:
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning(f"CRUD: Integrity error while {what}: {e.orig}")
            raise ConflictError("The queue changed concurrently; please retry")
