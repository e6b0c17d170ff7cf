# medqueue/db/models/queue.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, ForeignKey, Index, text
from sqlalchemy import Enum as SAEnum

from medqueue.db.base import Base, UTCDateTime
from medqueue.config.constants import QueueStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_ACTIVE = text("status IN ('WAITING', 'CALLED', 'IN_PROGRESS')")
_SERVING = text("status IN ('CALLED', 'IN_PROGRESS')")


class QueueTicketModel(Base):
    __tablename__ = "queue_tickets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    appointment_id = Column(
        String(36), ForeignKey("appointments.id"), nullable=False, unique=True
    )
    patient_id = Column(String(24), nullable=False, index=True)
    doctor_id = Column(String(24), nullable=False, index=True)
    queue_number = Column(Integer, nullable=False)
    status = Column(
        SAEnum(QueueStatus, name="queue_status", native_enum=False),
        default=QueueStatus.WAITING,
        nullable=False,
    )
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        # No two active tickets of one doctor share a number
        Index(
            "uq_queue_active_number",
            "doctor_id",
            "queue_number",
            unique=True,
            postgresql_where=_ACTIVE,
            sqlite_where=_ACTIVE,
        ),
        # One patient at a time per doctor
        Index(
            "uq_queue_serving_doctor",
            "doctor_id",
            unique=True,
            postgresql_where=_SERVING,
            sqlite_where=_SERVING,
        ),
    )


class QueueCounterModel(Base):
    """Per-doctor row locked while a queue number is handed out."""

    __tablename__ = "queue_counters"

    doctor_id = Column(String(24), primary_key=True)
    last_number = Column(Integer, nullable=False, default=0)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
