from fastapi import Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from medqueue.core.errors import SchedulingError
from medqueue.db.crud.appointment import AppointmentRepository
from medqueue.db.crud.queue import QueueTicketRepository
from medqueue.db.session import get_db_session
from medqueue.services.queue import QueueEngine
from medqueue.services.scheduler import Scheduler
from medqueue.services.validation import utcnow

logger = logging.getLogger(__name__)


async def scheduling_error_handler(request: Request, exc: SchedulingError):
    """Map engine errors onto HTTP responses (one status code per error kind)."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed upstream: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.message},
    )


def get_credential(request: Request) -> Optional[str]:
    """
    Bearer credential forwarded to the identity service.
    Token verification itself happens there, not here.
    """
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return None


# Get a database session dependency
async def get_db(request: Request):
    """Yield an async SQLAlchemy session (dependency)."""
    async for session in get_db_session(request):
        yield session


def get_scheduler(request: Request, db: AsyncSession = Depends(get_db)) -> Scheduler:
    return Scheduler(
        AppointmentRepository(db),
        QueueTicketRepository(db),
        request.app.state.identity,
        policy=request.app.state.policy,
        clock=getattr(request.app.state, "clock", None) or utcnow,
    )


def get_queue_engine(scheduler: Scheduler = Depends(get_scheduler)) -> QueueEngine:
    return QueueEngine(scheduler.tickets, scheduler.appointments, scheduler, clock=scheduler.clock)
