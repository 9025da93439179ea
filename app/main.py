from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.dependencies.services import (
    get_arq_dispatcher_cached,
    get_clock,
    get_mail_client_cached,
)
from app.jobs.cancellation_mail import build_mail_handlers
from app.jobs.queue import MailWorker
from app.services.mock_store import get_mock_store

# Import routers directly from submodules
from app.mock_data_view import router as mock_data_router
from app.tools.appointment import router as appointment_router
from app.tools.notification import router as notification_router
from app.health import router as health_router


def configure_logging() -> None:
    """Ensure application logs use the INFO level by default."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(logging.INFO)

# Configure logging as soon as the module is loaded
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    # --- Startup Logic ---
    settings = get_settings()

    settings_snapshot = settings.model_dump(
        by_alias=True,
        exclude={"mail_service_token"},
    )
    logger.info("Application settings on startup: %s", settings_snapshot)

    mail_client = get_mail_client_cached()
    worker = None
    if settings.use_mock_data:
        # In mock mode mail jobs are drained in-process; otherwise `arq app.worker.WorkerSettings` does it.
        worker = MailWorker(
            get_mock_store().mail_queue,
            build_mail_handlers(mail_client, settings),
            clock=get_clock(),
            max_tries=settings.mail_max_tries,
            backoff=settings.mail_retry_backoff,
            poll_interval=settings.mail_poll_interval,
        )
        worker.start()
    logger.info("Application startup complete.")

    try:
        yield  # The application is now running
    finally:
        # --- Shutdown Logic ---
        if worker is not None:
            await worker.stop()
        else:
            await get_arq_dispatcher_cached().close()
        logger.info("Closing mail client connection.")
        await mail_client.close()
        logger.info("Application shutdown complete.")


# --- Application Setup ---

settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
    redirect_slashes=False
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Include Routers ---

app.include_router(appointment_router, prefix="/appointments")
app.include_router(notification_router, prefix="/notifications")
app.include_router(health_router)
app.include_router(mock_data_router)
