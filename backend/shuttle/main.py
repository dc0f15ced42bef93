"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shuttle.api import routes, shuttles, ws
from shuttle.core.broadcaster import Broadcaster
from shuttle.core.errors import (
    CapacityExceeded,
    ConflictError,
    NotFoundError,
    ShuttleError,
    ValidationError,
)
from shuttle.core.order_manager import StudentOrderManager
from shuttle.core.route_engine import RouteAssignmentEngine
from shuttle.core.scheduler import create_scheduler
from shuttle.core.shuttle_tracker import ShuttleTracker
from shuttle.db.session import async_session, engine
from shuttle.models.base import Base
from shuttle.models import tables  # noqa: F401

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def status_for(exc: ShuttleError) -> int:
    """HTTP status for a domain error kind."""
    if isinstance(exc, (ValidationError, ConflictError, CapacityExceeded)):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    broadcaster = Broadcaster()
    await broadcaster.connect()

    tracker = ShuttleTracker(async_session, broadcaster)

    # Wire up API modules
    routes.engine = RouteAssignmentEngine(async_session)
    routes.order_manager = StudentOrderManager(async_session)
    shuttles.tracker = tracker
    ws.broadcaster = broadcaster

    scheduler = create_scheduler(tracker)
    scheduler.start()
    logger.info("Shuttle backend started")

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    await broadcaster.close()
    await engine.dispose()
    logger.info("Shuttle backend shut down")


app = FastAPI(
    title="School Shuttle Backend",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes.router)
app.include_router(shuttles.router)
app.include_router(ws.router)


@app.exception_handler(ShuttleError)
async def shuttle_error_handler(request: Request, exc: ShuttleError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    content = {"error": exc.detail, "kind": type(exc).__name__}
    if isinstance(exc, CapacityExceeded):
        content["seat_count"] = exc.seat_count
    return JSONResponse(status_code=status, content=content)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
