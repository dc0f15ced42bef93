"""Route assignment engine: creates, updates and deletes routes.

Every mutating call runs inside a single storage transaction. A failure at
any step (validation, capacity, missing rows, storage) rolls back the whole
call and the raised error propagates to the caller.
"""

import logging
import uuid
from collections.abc import Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shuttle.core.capacity import (
    check_student_orders,
    ensure_driver_available,
    find_duplicate_students,
    validate_assignment,
)
from shuttle.core.context import RequestContext, require_school
from shuttle.core.distance import Coord, compute_route_distance
from shuttle.core.errors import (
    DriverAlreadyAssigned,
    DuplicateDriverInRequest,
    InvalidStudentOrder,
    RouteNotFound,
    VehicleNotFound,
)
from shuttle.core.pagination import check_paging, page_meta
from shuttle.core.repository import SORT_FIELDS, RouteRepository, transaction
from shuttle.models.tables import Route, RouteAssignment
from shuttle.schemas.route import (
    DriverAssignmentIn,
    DriverAssignmentOut,
    DriverStop,
    RouteCreate,
    RouteDetail,
    RouteDetailPage,
    RouteDistance,
    RouteInfo,
    RoutePage,
    RouteUpdate,
    StudentOnRoute,
    StudentOrderIn,
)

logger = logging.getLogger(__name__)


def _route_info(route: Route) -> RouteInfo:
    return RouteInfo(
        route_uuid=route.route_uuid,
        route_name=route.name,
        route_description=route.description,
        created_at=route.created_at,
        created_by=route.created_by,
        updated_at=route.updated_at,
        updated_by=route.updated_by,
    )


def _route_detail(route: Route, rows) -> RouteDetail:
    drivers: dict[uuid.UUID, DriverAssignmentOut] = {}
    for assignment, driver, student in rows:
        out = drivers.get(driver.user_uuid)
        if out is None:
            out = drivers[driver.user_uuid] = DriverAssignmentOut(
                driver_uuid=driver.user_uuid,
                driver_first_name=driver.first_name,
                driver_last_name=driver.last_name,
            )
        out.students.append(StudentOnRoute(
            route_assignment_uuid=assignment.assignment_uuid,
            student_uuid=student.student_uuid,
            student_first_name=student.first_name,
            student_last_name=student.last_name,
            student_status=student.status,
            student_order=assignment.student_order,
            pickup_lat=student.pickup_lat,
            pickup_lon=student.pickup_lon,
        ))

    return RouteDetail(
        **_route_info(route).model_dump(),
        route_assignment=list(drivers.values()),
    )


class RouteAssignmentEngine:
    """Assigns students to driver routes under seat-capacity constraints."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    # ---- mutations ----

    async def add_route(self, ctx: RequestContext, request: RouteCreate) -> uuid.UUID:
        """Create a route with its initial driver/student assignments.

        Repeated drivers or students and bad orders are rejected before the
        transaction opens. Inside it, each driver block is checked for exclusivity and
        each student for exclusivity and seat capacity before insertion.
        """
        school_uuid = require_school(ctx)
        drivers = [block.driver_uuid for block in request.route_assignment]
        if len(set(drivers)) != len(drivers):
            raise DuplicateDriverInRequest()
        find_duplicate_students(
            [s.student_uuid for s in block.students] for block in request.route_assignment
        )
        for block in request.route_assignment:
            check_student_orders(s.student_order for s in block.students)

        async with transaction(self.session_factory) as repo:
            route_uuid = await repo.add_route(Route(
                school_uuid=school_uuid,
                name=request.route_name,
                description=request.route_description,
                created_by=ctx.user_name,
            ))
            logger.info("Route %s inserted for school %s", route_uuid, school_uuid)

            for block in request.route_assignment:
                await self._assign_driver_block(repo, ctx, school_uuid, route_uuid, block)

        logger.info(
            "Route %s committed with %d driver block(s)",
            route_uuid, len(request.route_assignment),
        )
        return route_uuid

    async def _assign_driver_block(
        self,
        repo: RouteRepository,
        ctx: RequestContext,
        school_uuid: uuid.UUID,
        route_uuid: uuid.UUID,
        block: DriverAssignmentIn,
    ) -> None:
        driver_uuid = block.driver_uuid
        ensure_driver_available(driver_uuid, await repo.is_driver_assigned(driver_uuid))

        seats = await repo.vehicle_seats_by_driver(driver_uuid, lock=True)
        assigned = await repo.count_assigned_students_by_driver(driver_uuid)
        logger.debug("Driver %s: %d/%d seats taken", driver_uuid, assigned, seats)

        for student in block.students:
            validate_assignment(
                driver_uuid, seats, assigned, student.student_uuid,
                await repo.is_student_assigned(student.student_uuid),
            )
            await repo.add_assignment(RouteAssignment(
                route_uuid=route_uuid,
                driver_uuid=driver_uuid,
                student_uuid=student.student_uuid,
                school_uuid=school_uuid,
                student_order=student.student_order,
                created_by=ctx.user_name,
            ))
            assigned += 1

    async def update_route(
        self, ctx: RequestContext, route_uuid: uuid.UUID, request: RouteUpdate,
    ) -> None:
        """Rename a route and apply removed, added and reordered students.

        All phases share one transaction: either every change is applied or
        none is.
        """
        school_uuid = require_school(ctx)
        find_duplicate_students([[s.student_uuid for s in request.added]])
        check_student_orders(s.student_order for s in request.added if s.student_order > 0)
        check_student_orders(s.student_order for s in request.students)

        async with transaction(self.session_factory) as repo:
            matched = await repo.update_route_details(
                route_uuid, school_uuid, request.route_name,
                request.route_description, ctx.user_name,
            )
            if not matched:
                raise RouteNotFound()

            for student in request.deleted_students:
                removed = await repo.delete_student_from_route(
                    route_uuid, student.student_uuid, school_uuid,
                )
                logger.debug("Removed student %s from route %s (%d row)", student.student_uuid, route_uuid, removed)

            if request.added:
                await self._add_students(
                    repo, ctx, school_uuid, route_uuid, request.driver_uuid, request.added,
                )

            for student in request.students:
                await repo.apply_student_order(
                    route_uuid, student.student_uuid, student.student_order, ctx.user_name,
                )

            clashes = await repo.duplicate_orders(route_uuid)
            if clashes:
                driver_uuid, order = clashes[0]
                logger.info("Route %s: order %d repeated for driver %s", route_uuid, order, driver_uuid)
                raise InvalidStudentOrder(f"Student order {order} used more than once")

        logger.info(
            "Route %s updated: +%d -%d, %d reordered",
            route_uuid, len(request.added), len(request.deleted_students), len(request.students),
        )

    async def _add_students(
        self,
        repo: RouteRepository,
        ctx: RequestContext,
        school_uuid: uuid.UUID,
        route_uuid: uuid.UUID,
        driver_uuid: uuid.UUID,
        students: Sequence[StudentOrderIn],
    ) -> None:
        if not await repo.validate_driver_vehicle(driver_uuid):
            raise VehicleNotFound(driver_uuid)
        bound_route = await repo.route_of_driver(driver_uuid)
        if bound_route is not None and bound_route != route_uuid:
            raise DriverAlreadyAssigned()

        seats = await repo.vehicle_seats_by_driver(driver_uuid, lock=True)
        assigned = await repo.count_assigned_students_by_driver(driver_uuid)

        # Explicit orders must not collide with the ones already on the list
        taken = set(await repo.student_orders(route_uuid, driver_uuid))
        explicit = {s.student_order for s in students if s.student_order > 0}
        if taken & explicit:
            raise InvalidStudentOrder(f"Student order {min(taken & explicit)} already taken")
        last_order = max(taken | explicit, default=0)

        for student in students:
            validate_assignment(
                driver_uuid, seats, assigned, student.student_uuid,
                await repo.is_student_assigned(student.student_uuid),
            )
            order = student.student_order
            if order <= 0:
                last_order += 1
                order = last_order

            await repo.add_assignment(RouteAssignment(
                route_uuid=route_uuid,
                driver_uuid=driver_uuid,
                student_uuid=student.student_uuid,
                school_uuid=school_uuid,
                student_order=order,
                created_by=ctx.user_name,
            ))
            assigned += 1

    async def delete_route(self, ctx: RequestContext, route_uuid: uuid.UUID) -> None:
        """Delete a route and its assignments (assignments first)."""
        school_uuid = require_school(ctx)
        async with transaction(self.session_factory) as repo:
            if not await repo.route_exists(route_uuid, school_uuid):
                raise RouteNotFound()
            await repo.delete_route_assignments(route_uuid, school_uuid)
            await repo.delete_route(route_uuid, school_uuid)
        logger.info("Route %s deleted by %s", route_uuid, ctx.user_name)

    # ---- queries ----

    async def list_routes(
        self,
        ctx: RequestContext,
        page: int = 1,
        limit: int | None = None,
        sort_by: str = "route_name",
        direction: str = "asc",
    ) -> RoutePage:
        school_uuid = require_school(ctx)
        limit = check_paging(page, limit, sort_by, SORT_FIELDS, direction)

        async with transaction(self.session_factory) as repo:
            total = await repo.count_routes(school_uuid)
            routes = await repo.fetch_routes(
                school_uuid, (page - 1) * limit, limit, sort_by, direction,
            )

        return RoutePage(
            data=[_route_info(r) for r in routes],
            meta=page_meta(page, limit, total, len(routes)),
        )

    async def list_route_assignments(
        self,
        page: int = 1,
        limit: int | None = None,
        sort_by: str = "route_name",
        direction: str = "asc",
    ) -> RouteDetailPage:
        """Every school's routes with their assignments, paginated by route."""
        limit = check_paging(page, limit, sort_by, SORT_FIELDS, direction)

        async with transaction(self.session_factory) as repo:
            total = await repo.count_routes()
            routes = await repo.fetch_routes(None, (page - 1) * limit, limit, sort_by, direction)
            details = [
                _route_detail(route, await repo.fetch_route_assignments(route.route_uuid))
                for route in routes
            ]

        return RouteDetailPage(data=details, meta=page_meta(page, limit, total, len(routes)))

    async def get_route(self, ctx: RequestContext, route_uuid: uuid.UUID) -> RouteDetail:
        """Route detail with students grouped by driver in pickup order."""
        school_uuid = require_school(ctx)
        async with transaction(self.session_factory) as repo:
            route = await repo.fetch_route(route_uuid, school_uuid)
            if route is None:
                raise RouteNotFound()
            rows = await repo.fetch_route_assignments(route_uuid)
        return _route_detail(route, rows)

    async def routes_for_driver(self, driver_uuid: uuid.UUID) -> list[DriverStop]:
        """The driver's present students in pickup order, with today's status."""
        async with transaction(self.session_factory) as repo:
            rows = await repo.fetch_driver_students(driver_uuid)
        logger.debug("Driver %s has %d stop(s) today", driver_uuid, len(rows))
        return [
            DriverStop(
                route_assignment_uuid=assignment.assignment_uuid,
                route_uuid=assignment.route_uuid,
                student_uuid=student.student_uuid,
                student_first_name=student.first_name,
                student_last_name=student.last_name,
                student_status=student.status,
                student_order=assignment.student_order,
                student_address=student.address,
                pickup_lat=student.pickup_lat,
                pickup_lon=student.pickup_lon,
                shuttle_uuid=shuttle.shuttle_uuid if shuttle else None,
                shuttle_status=shuttle.status if shuttle else None,
                school_name=school.name,
                school_lat=school.lat,
                school_lon=school.lon,
            )
            for assignment, student, school, shuttle in rows
        ]

    async def driver_route_distance(self, driver_uuid: uuid.UUID, start: Coord) -> RouteDistance:
        """Distance from ``start`` through the driver's pickups to the school."""
        stops = await self.routes_for_driver(driver_uuid)
        if not stops:
            raise RouteNotFound("No route assigned to driver")
        points = [
            (s.pickup_lat, s.pickup_lon)
            for s in stops
            if s.pickup_lat is not None and s.pickup_lon is not None
        ]
        school = (stops[0].school_lat, stops[0].school_lon)
        return RouteDistance(
            driver_uuid=driver_uuid,
            stops=len(points),
            total_distance_km=compute_route_distance(start, points, school),
        )

    async def max_student_order(self, route_uuid: uuid.UUID, driver_uuid: uuid.UUID) -> int:
        async with transaction(self.session_factory) as repo:
            return await repo.max_student_order(route_uuid, driver_uuid)
