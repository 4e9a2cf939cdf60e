from fastapi import FastAPI
from contextlib import asynccontextmanager
from config.database import engine, Base, check_db_connection
from config.logging_config import setup_logging
from config.middleware import add_cors_middleware
from config import settings
import clinic.models, scheduled_tasks.models  # noqa: F401 - register tables
import scheduled_tasks.router, notifications.router
from scheduled_tasks.scheduler import task_scheduler
import logging

# ------------- Logging -------------
setup_logging()
logger = logging.getLogger(__name__)


# ------------- Lifespan -------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the task poller on startup and stop it on shutdown"""
    logger.info("FastAPI application starting up...")

    if settings.TASK_SCHEDULER_ENABLED:
        try:
            task_scheduler.start(interval_seconds=settings.POLLING_INTERVAL_SECONDS)
        except Exception as e:
            logger.error(f"Failed to start task scheduler: {str(e)}")
    else:
        logger.info("Task scheduler disabled (TASK_SCHEDULER_ENABLED=false)")

    yield

    logger.info("FastAPI application shutting down...")
    if task_scheduler.is_running:
        try:
            task_scheduler.stop()
        except Exception as e:
            logger.error(f"Error stopping scheduler: {str(e)}")


# ------------- Create app -------------
app = FastAPI(title="Clinic Scheduled Tasks", lifespan=lifespan)

# ------------- CORS + DB -------------
add_cors_middleware(app)
Base.metadata.create_all(bind=engine)

# ------------- Routers -------------
app.include_router(scheduled_tasks.router.router)
app.include_router(notifications.router.router)


# ------------- Health endpoints -------------
@app.get("/health")
def health_check():
    db_connected = check_db_connection()
    return {
        "status": "healthy" if db_connected else "degraded",
        "database_connected": db_connected,
        "scheduler_running": task_scheduler.is_running,
        "instance_id": settings.INSTANCE_ID,
    }


@app.get("/")
def read_root():
    return {"message": "Clinic scheduled task service is running"}
