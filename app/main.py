# app/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.container import build_core
from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.core.logger import setup_logging, get_logger
from app.routers import health, appointments, doctor
from app.scheduler import start_scheduler, stop_scheduler

# Import from db/sql.py (async)
from app.db.sql import engine, AsyncSessionLocal, init_db

logger = get_logger("main")


# Define lifespan event
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    The lifespan function is used to manage the FastAPI application lifecycle.
    Tests that inject their own core skip the wiring below.
    """
    setup_logging()
    owns_core = not hasattr(app.state, "core")
    if owns_core:
        # Initialize database (create tables if they don't exist)
        await init_db(engine)
        app.state.session_factory = AsyncSessionLocal
        app.state.core = build_core(AsyncSessionLocal, settings)
        if settings.SWEEPER_ENABLED:
            start_scheduler(app.state.core, settings)
    logger.info("Telemedicine scheduling service starting (%s)", settings.APP_ENV)
    yield
    if owns_core:
        stop_scheduler()
        await app.state.core.hooks.drain()
        await engine.dispose()
    logger.info("Telemedicine scheduling service stopped.")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Telemedicine Appointment Scheduling",
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    # Routing
    app.include_router(health.router, prefix=settings.API_PREFIX, tags=["health"])
    app.include_router(appointments.router, prefix=settings.API_PREFIX, tags=["appointments"])
    app.include_router(doctor.router, prefix=settings.API_PREFIX, tags=["doctor"])

    @app.get("/")
    def root():
        return {"message": "Telemedicine scheduling API running successfully"}

    return app


app = create_app()
