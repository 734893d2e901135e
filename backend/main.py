"""
BotNexus FastAPI Application

Main entry point for the bot hosting server.
Configures FastAPI with CORS, routes, error handlers, database and the
heartbeat scheduler.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.core.errors import BotNexusError, ValidationError
from app.database import init_db
from app.api.routes import bots, config, health, heartbeat, logs, metrics, users
from app.services.heartbeat_service import HeartbeatScheduler

settings = get_settings()

logging.basicConfig(
    level=settings.server.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("botnexus")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Handles:
    - Database initialisation on startup
    - Heartbeat scheduler start/stop
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.VERSION}")
    init_db()

    scheduler = None
    if settings.heartbeat.ENABLED:
        scheduler = HeartbeatScheduler()
        await scheduler.start()
    app.state.heartbeat_scheduler = scheduler
    logger.info(f"Server ready on {settings.server.HOST}:{settings.server.PORT}")

    yield

    # Shutdown
    logger.info("Shutting down server...")
    if scheduler:
        await scheduler.stop()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Deploy and monitor resource-capped Telegram and Discord bots",
    lifespan=lifespan,
    debug=settings.DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.server.CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BotNexusError)
async def botnexus_error_handler(request: Request, exc: BotNexusError) -> JSONResponse:
    """Render domain errors raised outside the action dispatcher (e.g. auth)."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies in the same shape as other errors."""
    fields = ", ".join(".".join(str(part) for part in err["loc"][1:]) for err in exc.errors())
    error = ValidationError(f"Invalid request fields: {fields}" if fields else "Invalid request")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(config.router)
app.include_router(users.router)
app.include_router(bots.router)
app.include_router(metrics.router)
app.include_router(logs.router)
app.include_router(heartbeat.router)


@app.get("/")
async def root() -> dict:
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API information.
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.VERSION,
        "docs": "/docs",
        "health": "/health",
    }
