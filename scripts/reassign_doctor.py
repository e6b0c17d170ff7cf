# scripts/reassign_doctor.py
"""Run the inactivation cascade for one doctor by hand (e.g. after a missed event)."""
import argparse
import asyncio
import logging

from medqueue.config.settings import settings
from medqueue.core.identity import HttpIdentityVerifier
from medqueue.db.base import get_engine, get_session_factory
from medqueue.db.crud.appointment import AppointmentRepository
from medqueue.db.crud.queue import QueueTicketRepository
from medqueue.db.session import session_scope
from medqueue.services.reassignment import ReassignmentCoordinator
from medqueue.services.scheduler import Scheduler
from medqueue.services.validation import SchedulingPolicy

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("reassign_doctor")


async def main(doctor_id: str) -> None:
    engine = await get_engine(str(settings.database_url))
    session_factory = await get_session_factory(engine)
    identity = HttpIdentityVerifier(
        settings.identity_service_url, timeout=settings.identity_timeout_seconds
    )

    try:
        async with session_scope(session_factory) as session:
            scheduler = Scheduler(
                AppointmentRepository(session),
                QueueTicketRepository(session),
                identity,
                policy=SchedulingPolicy.from_settings(settings),
            )
            coordinator = ReassignmentCoordinator(scheduler, identity)
            outcomes = await coordinator.handle_doctor_inactive(
                doctor_id, settings.identity_service_token
            )

        print(f"{'Appointment':<38} {'Reassigned':<11} {'New doctor':<26}")
        print("-" * 76)
        for o in outcomes:
            print(f"{o.old_appointment_id:<38} {str(o.reassigned):<11} {o.new_doctor_id or '-':<26}")
    finally:
        await identity.aclose()
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Cancel and reassign an inactive doctor's appointments.")
    parser.add_argument("doctor_id", help="24-character identity-service id of the doctor")
    args = parser.parse_args()
    asyncio.run(main(args.doctor_id))
