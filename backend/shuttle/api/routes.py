"""Route REST API endpoints."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query

from shuttle.api.deps import envelope, request_context
from shuttle.core.context import RequestContext
from shuttle.core.errors import ValidationError
from shuttle.core.order_manager import StudentOrderManager
from shuttle.core.route_engine import RouteAssignmentEngine
from shuttle.schemas.route import (
    DriverStop,
    RouteCreate,
    RouteDetail,
    RouteDetailPage,
    RouteDistance,
    RoutePage,
    RouteUpdate,
    StudentOrderUpdate,
)

router = APIRouter(prefix="/api/routes", tags=["routes"])

# Will be set by main.py
engine: RouteAssignmentEngine | None = None
order_manager: StudentOrderManager | None = None


def _engine() -> RouteAssignmentEngine:
    if engine is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return engine


def _driver(ctx: RequestContext) -> uuid.UUID:
    if ctx.user_uuid is None:
        raise ValidationError("Request is not bound to a driver")
    return ctx.user_uuid


@router.get("", response_model=RoutePage)
async def list_routes(
    page: int = 1,
    limit: int | None = None,
    sort_by: str = "route_name",
    direction: str = "asc",
    ctx: RequestContext = Depends(request_context),
):
    """List the acting school's routes, paginated."""
    return await _engine().list_routes(ctx, page, limit, sort_by, direction)


@router.get("/driver", response_model=list[DriverStop])
async def get_driver_route(ctx: RequestContext = Depends(request_context)):
    """The acting driver's pickups for today, in order."""
    return await _engine().routes_for_driver(_driver(ctx))


@router.get("/driver/distance", response_model=RouteDistance)
async def get_driver_distance(
    lat: float = Query(...),
    lon: float = Query(...),
    ctx: RequestContext = Depends(request_context),
):
    """Distance from the given start through the driver's pickups to school."""
    return await _engine().driver_route_distance(_driver(ctx), (lat, lon))


@router.get("/assignments", response_model=RouteDetailPage)
async def list_route_assignments(
    page: int = 1,
    limit: int | None = None,
    sort_by: str = "route_name",
    direction: str = "asc",
):
    """Routes of every school with their driver/student assignments."""
    return await _engine().list_route_assignments(page, limit, sort_by, direction)


@router.get("/{route_uuid}", response_model=RouteDetail)
async def get_route(route_uuid: uuid.UUID, ctx: RequestContext = Depends(request_context)):
    return await _engine().get_route(ctx, route_uuid)


@router.post("", status_code=201)
async def add_route(body: RouteCreate, ctx: RequestContext = Depends(request_context)):
    route_uuid = await _engine().add_route(ctx, body)
    return envelope("Route added successfully", {"route_uuid": str(route_uuid)})


@router.put("/{route_uuid}")
async def update_route(
    route_uuid: uuid.UUID,
    body: RouteUpdate,
    ctx: RequestContext = Depends(request_context),
):
    await _engine().update_route(ctx, route_uuid, body)
    return envelope("Route updated successfully")


@router.patch("/students/{student_uuid}/order")
async def update_student_order(
    student_uuid: uuid.UUID,
    body: StudentOrderUpdate,
    ctx: RequestContext = Depends(request_context),
):
    """Drag-and-drop: move one student to a new place in the pickup list."""
    if order_manager is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    final = await order_manager.move_student(ctx, student_uuid, body.new_order)
    return envelope("Student order updated successfully", {"student_order": final})


@router.delete("/{route_uuid}")
async def delete_route(route_uuid: uuid.UUID, ctx: RequestContext = Depends(request_context)):
    await _engine().delete_route(ctx, route_uuid)
    return envelope("Route deleted successfully")
