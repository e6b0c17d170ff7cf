# scripts/run_sweeps.py
"""
Run one pass of the lifecycle sweeps.

Meant to be invoked by cron / a k8s CronJob; the cadence lives there, e.g.
  * * * * *      run_sweeps.py --only missed no-show
  25,55 * * * *  run_sweeps.py --only check-in
  0 * * * *      run_sweeps.py --only reminders
"""
import argparse
import asyncio
import logging

from medqueue.config.settings import settings
from medqueue.core.identity import HttpIdentityVerifier
from medqueue.db.base import get_engine, get_session_factory
from medqueue.db.crud.appointment import AppointmentRepository
from medqueue.db.crud.queue import QueueTicketRepository
from medqueue.db.session import session_scope
from medqueue.services.lifecycle import (
    LoggingReminderNotifier,
    sweep_auto_check_in,
    sweep_missed_appointments,
    sweep_reminders,
    sweep_unanswered_calls,
)
from medqueue.services.queue import QueueEngine
from medqueue.services.scheduler import Scheduler
from medqueue.services.validation import SchedulingPolicy

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("run_sweeps")

SWEEPS = ("missed", "no-show", "check-in", "reminders")


async def main(only) -> None:
    engine = await get_engine(str(settings.database_url))
    session_factory = await get_session_factory(engine)
    identity = HttpIdentityVerifier(
        settings.identity_service_url, timeout=settings.identity_timeout_seconds
    )
    policy = SchedulingPolicy.from_settings(settings)

    try:
        async with session_scope(session_factory) as session:
            scheduler = Scheduler(
                AppointmentRepository(session), QueueTicketRepository(session), identity, policy=policy
            )
            queue = QueueEngine(scheduler.tickets, scheduler.appointments, scheduler)

            if "missed" in only:
                expired = await sweep_missed_appointments(scheduler, queue)
                logger.info(f"missed: {len(expired)} appointments closed")
            if "no-show" in only:
                no_shows = await sweep_unanswered_calls(scheduler, queue)
                logger.info(f"no-show: {len(no_shows)} appointments marked")
            if "check-in" in only:
                joined = await sweep_auto_check_in(scheduler, queue)
                logger.info(f"check-in: {len(joined)} patients queued")
            if "reminders" in only:
                sent = await sweep_reminders(
                    scheduler, identity, LoggingReminderNotifier(), settings.identity_service_token
                )
                logger.info(f"reminders: {len(sent)} sent")
    finally:
        await identity.aclose()
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one pass of the appointment lifecycle sweeps.")
    parser.add_argument(
        "--only",
        nargs="+",
        choices=SWEEPS,
        default=list(SWEEPS),
        help="which sweeps to run (default: all)",
    )
    args = parser.parse_args()
    asyncio.run(main(args.only))
