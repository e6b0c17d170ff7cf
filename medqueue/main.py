from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from medqueue.config.settings import settings
from medqueue.core.errors import SchedulingError
from medqueue.core.identity import HttpIdentityVerifier
from medqueue.core.middleware import scheduling_error_handler
from medqueue.db.base import get_engine, get_session_factory
from medqueue.routes.appointment.router import router as appointment_router
from medqueue.routes.queue.router import router as queue_router
from medqueue.services.validation import SchedulingPolicy

# -------------------------------------------------------------------------------------
# Logging
# -------------------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application start-up & shutdown hooks."""
    # ------------------------------------------------------------------ start‑up -----
    logger.info("Application startup …")

    engine = None
    identity = None
    if getattr(app.state, "session_factory", None) is None:
        try:
            logger.info("Initializing Database Engine...")
            engine = await get_engine(str(settings.database_url))
            app.state.engine = engine
            app.state.session_factory = await get_session_factory(engine)
            logger.info("DB engine and session factory ready.")
        except Exception as e:
            logger.critical(f"CRITICAL ERROR DURING DATABASE STARTUP: {e}", exc_info=True)
            if engine:
                await engine.dispose()
            raise

    if getattr(app.state, "identity", None) is None:
        identity = HttpIdentityVerifier(
            settings.identity_service_url, timeout=settings.identity_timeout_seconds
        )
        app.state.identity = identity
        logger.info(f"Identity service client ready ({settings.identity_service_url})")

    # ------------------------------------------------ give control back
    yield

    # ------------------------------------------------ shutdown --------
    logger.info("Application shutdown …")
    if identity:
        try:
            await identity.aclose()
        except Exception:
            logger.exception("Error closing identity service client")
    if engine:
        try:
            await engine.dispose()
            logger.info("DB engine disposed")
        except Exception:
            logger.exception("Error disposing DB engine")
    logger.info("Shutdown complete")


def create_app(session_factory=None, identity=None, policy=None, clock=None) -> FastAPI:
    """
    Build the API. Collaborators passed in here win over the ones the
    lifespan would create from settings (tests inject in-memory ones).
    """
    app = FastAPI(title="Clinic Scheduling & Queue Service", lifespan=lifespan)
    app.state.session_factory = session_factory
    app.state.identity = identity
    app.state.policy = policy or SchedulingPolicy.from_settings(settings)
    app.state.clock = clock

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(o) for o in settings.cors_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SchedulingError, scheduling_error_handler)

    @app.get("/health")
    async def health_check(request: Request):
        return {
            "status": "ok",
            "database": "ready" if request.app.state.session_factory else "not initialised",
            "identity": "ready" if request.app.state.identity else "not initialised",
        }

    app.include_router(appointment_router)
    app.include_router(queue_router)
    return app


app = create_app()
