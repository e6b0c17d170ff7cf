"""
Doctor-inactivation cascade.

When a doctor is deactivated every open appointment of theirs is cancelled
and, where possible, rebooked for the same patient and time with another
active doctor of the same specialty.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from medqueue.config.constants import REASSIGNABLE_STATUSES
from medqueue.core.errors import ConflictError, NotFoundError, SchedulingError
from medqueue.core.identity import DoctorIdentity, IdentityVerifier
from medqueue.services.scheduler import Scheduler
from medqueue.services.validation import validate_object_id

logger = logging.getLogger(__name__)

DOCTOR_STATUS_CHANGED = "doctor.status.changed"


@dataclass
class ReassignmentOutcome:
    old_appointment_id: str
    reassigned: bool
    new_doctor_id: Optional[str] = None
    new_appointment_id: Optional[str] = None


class ReassignmentCoordinator:
    def __init__(self, scheduler: Scheduler, identity: IdentityVerifier):
        self.scheduler = scheduler
        self.identity = identity

    async def _candidate_pool(
        self, doctor: DoctorIdentity, credential: Optional[str]
    ) -> List[DoctorIdentity]:
        listed = await self.identity.list_doctors_by_specialty(doctor.specialty, credential)
        # Keep the order the directory returned; first free slot wins
        pool = [d for d in listed if d.id != doctor.id and d.is_active]
        if not pool:
            logger.warning(
                f"No active '{doctor.specialty}' doctors available to take over from doctor {doctor.id}; "
                "appointments will only be cancelled"
            )
        return pool

    async def handle_doctor_inactive(
        self, doctor_id: str, credential: Optional[str]
    ) -> List[ReassignmentOutcome]:
        """
        Cancel the doctor's SCHEDULED / IN_PROGRESS appointments and try to
        rebook each with a same-specialty colleague.

        Only the initial doctor / specialty lookup can raise; every
        per-appointment failure ends up as `reassigned=False`.
        """
        validate_object_id(doctor_id, "doctor id")
        doctor = await self.identity.get_doctor(doctor_id, credential)
        if not doctor.specialty:
            raise NotFoundError(f"Doctor {doctor_id} has no specialty on record")

        candidates = await self._candidate_pool(doctor, credential)
        affected = await self.scheduler.list_appointments(
            doctor_id=doctor_id, status=REASSIGNABLE_STATUSES
        )
        logger.info(
            f"Doctor {doctor_id} inactive: {len(affected)} appointments to cancel, "
            f"{len(candidates)} candidate doctors"
        )

        # A rolled-back rebook expires every loaded row; keep plain values
        slots = [(a.id, a.patient_id, a.start_time) for a in affected]
        outcomes = []
        for slot in slots:
            outcomes.append(await self._reassign(*slot, candidates))

        moved = sum(1 for o in outcomes if o.reassigned)
        logger.info(f"Doctor {doctor_id} inactive: reassigned {moved}/{len(outcomes)} appointments")
        return outcomes

    async def _reassign(
        self,
        appointment_id: str,
        patient_id: str,
        start_time: datetime,
        candidates: List[DoctorIdentity],
    ) -> ReassignmentOutcome:
        try:
            await self.scheduler.cancel(appointment_id)
        except SchedulingError as e:
            logger.error(f"Could not cancel appointment {appointment_id}: {e.message}")
            return ReassignmentOutcome(old_appointment_id=appointment_id, reassigned=False)

        # One candidate at a time, in directory order
        for candidate in candidates:
            try:
                new_appointment = await self.scheduler.rebook(
                    appointment_id, patient_id, start_time, candidate.id
                )
            except ConflictError as e:
                logger.debug(f"Doctor {candidate.id} unavailable for appointment {appointment_id}: {e.message}")
                continue
            except SchedulingError as e:
                logger.warning(
                    f"Rebooking appointment {appointment_id} with doctor {candidate.id} failed: {e.message}"
                )
                continue
            return ReassignmentOutcome(
                old_appointment_id=appointment_id,
                reassigned=True,
                new_doctor_id=candidate.id,
                new_appointment_id=new_appointment.id,
            )

        logger.warning(f"Appointment {appointment_id} cancelled without a replacement doctor")
        return ReassignmentOutcome(old_appointment_id=appointment_id, reassigned=False)

    async def handle_doctor_status_event(
        self, event: Dict[str, Any], credential: Optional[str]
    ) -> List[ReassignmentOutcome]:
        """Entry point for `doctor.status.changed` events from the clinic event bus."""
        if event.get("eventType") != DOCTOR_STATUS_CHANGED or event.get("newStatus") != "INACTIVE":
            logger.debug(f"Ignoring event {event.get('eventType')!r} / {event.get('newStatus')!r}")
            return []
        logger.info(f"Doctor {event.get('doctorId')} became inactive, rescheduling appointments")
        return await self.handle_doctor_inactive(event.get("doctorId"), credential)
