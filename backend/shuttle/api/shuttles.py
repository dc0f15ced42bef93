"""Shuttle status REST API endpoints."""

import uuid

from fastapi import APIRouter, Depends, HTTPException

from shuttle.api.deps import request_context
from shuttle.core.context import RequestContext
from shuttle.core.errors import ValidationError
from shuttle.core.shuttle_tracker import ShuttleTracker
from shuttle.schemas.shuttle import (
    ShuttleEvent,
    ShuttlePage,
    ShuttleRecord,
    ShuttleStatusUpdate,
    ShuttleTrack,
)

router = APIRouter(prefix="/api/shuttles", tags=["shuttles"])

# Will be set by main.py
tracker: ShuttleTracker | None = None


def _tracker() -> ShuttleTracker:
    if tracker is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return tracker


def _user(ctx: RequestContext) -> uuid.UUID:
    if ctx.user_uuid is None:
        raise ValidationError("Request is not bound to a user")
    return ctx.user_uuid


@router.put(
    "/students/{student_uuid}",
    response_model=ShuttleEvent,
    response_model_exclude={"device_token"},
)
async def update_shuttle_status(
    student_uuid: uuid.UUID,
    body: ShuttleStatusUpdate,
    ctx: RequestContext = Depends(request_context),
):
    """Driver reports a new ride status for one of their students."""
    return await _tracker().update_status(ctx, student_uuid, body.status)


@router.get("/parent", response_model=list[ShuttleTrack])
async def get_parent_shuttles(ctx: RequestContext = Depends(request_context)):
    """Today's ride status of each of the acting parent's children."""
    return await _tracker().track_for_parent(_user(ctx))


@router.get("/parent/history", response_model=ShuttlePage)
async def get_parent_history(
    page: int = 1,
    limit: int | None = None,
    sort_by: str = "created_at",
    direction: str = "asc",
    ctx: RequestContext = Depends(request_context),
):
    return await _tracker().history_for_parent(_user(ctx), page, limit, sort_by, direction)


@router.get("/driver", response_model=list[ShuttleRecord])
async def get_driver_shuttles(ctx: RequestContext = Depends(request_context)):
    """Rides the acting driver has recorded today."""
    return await _tracker().shuttles_for_driver(_user(ctx))


@router.get("/{shuttle_uuid}", response_model=ShuttleRecord)
async def get_shuttle(shuttle_uuid: uuid.UUID, ctx: RequestContext = Depends(request_context)):
    return await _tracker().get_shuttle(ctx, shuttle_uuid)
