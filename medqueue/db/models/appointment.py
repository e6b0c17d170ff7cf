# medqueue/db/models/appointment.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Boolean, Index
from sqlalchemy import Enum as SAEnum

from medqueue.db.base import Base, UTCDateTime
from medqueue.config.constants import AppointmentStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppointmentModel(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id = Column(String(24), nullable=False, index=True)
    doctor_id = Column(String(24), nullable=False, index=True)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)

    status = Column(
        SAEnum(AppointmentStatus, name="appointment_status", native_enum=False),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
    )
    reminder_24h_sent = Column(Boolean, default=False, nullable=False)

    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    # Overlap itself is guarded by exclusion constraints (see the initial migration);
    # these only speed up the window lookups.
    __table_args__ = (
        Index("ix_appointments_doctor_window", "doctor_id", "start_time", "end_time"),
        Index("ix_appointments_patient_window", "patient_id", "start_time", "end_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<Appointment {self.id} doctor={self.doctor_id} patient={self.patient_id} "
            f"{self.start_time:%Y-%m-%d %H:%M} {self.status.value}>"
        )
