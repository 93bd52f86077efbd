"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from outreach.api.v1.endpoints import health
from outreach.api.v1.routes import api_router
from outreach.container import ProviderNotConfiguredError, build_container
from outreach.core.config import get_settings

load_dotenv()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Builds the container (stores, providers, engine, scheduler)
    - Validates provider configuration (fatal only in production)
    - Starts the scheduler when SCHEDULER_AUTOSTART is set

    Shutdown:
    - Stops the scheduler timer and releases provider clients
    """
    # ========================
    # STARTUP
    # ========================
    logger.info("Starting Outreach Campaign Engine...")

    settings = get_settings()
    strict_validation = settings.environment == "production"

    container = build_container(settings)
    try:
        await container.initialize(strict=strict_validation)
    except ProviderNotConfiguredError as e:
        logger.error(f"Startup failed: {e.message}")
        raise

    app.state.container = container

    if settings.scheduler_autostart:
        await container.scheduler.start()

    logger.info("Outreach Campaign Engine started successfully")

    yield  # Application is running

    # ========================
    # SHUTDOWN
    # ========================
    logger.info("Shutting down Outreach Campaign Engine...")

    try:
        await container.shutdown()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")

    logger.info("Outreach Campaign Engine shutdown complete")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Outreach Campaign Engine",
        description="Multi-step AI voice call and email campaign scheduler",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
