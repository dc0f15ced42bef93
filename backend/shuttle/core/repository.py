"""Storage queries for routes and route assignments.

A ``RouteRepository`` wraps one ``AsyncSession``; the caller owns the
transaction. ``transaction()`` opens a session, begins a transaction and
rolls it back if the block raises.
"""

import datetime
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shuttle.core.errors import DriverNotFound, StorageError, StudentNotFound, VehicleNotFound
from shuttle.models.tables import (
    DeviceToken,
    Driver,
    Route,
    RouteAssignment,
    School,
    Shuttle,
    Student,
    Vehicle,
)

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "route_name": Route.name,
    "created_at": Route.created_at,
    "updated_at": Route.updated_at,
}

SHUTTLE_SORT_FIELDS = {
    "created_at": Shuttle.created_at,
    "updated_at": Shuttle.updated_at,
    "status": Shuttle.status,
}


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def start_of_day(now: datetime.datetime | None = None) -> datetime.datetime:
    now = now or utcnow()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


@asynccontextmanager
async def transaction(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator["RouteRepository"]:
    """Run a block inside one storage transaction.

    Domain errors propagate unchanged; lower-layer failures are logged and
    re-raised as ``StorageError``. Either way the transaction is rolled back.
    """
    async with session_factory() as session:
        try:
            async with session.begin():
                yield RouteRepository(session)
        except SQLAlchemyError as exc:
            logger.exception("Storage failure, transaction rolled back")
            raise StorageError() from exc


class RouteRepository:
    """Queries over routes, assignments and the lookups the route core needs."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ---- driver / vehicle / student lookups ----

    async def vehicle_seats_by_driver(self, driver_uuid: uuid.UUID, lock: bool = False) -> int:
        """Seat count of the driver's vehicle.

        With ``lock`` the vehicle row is held ``FOR UPDATE`` until the
        transaction ends, serialising capacity checks for the same driver.
        """
        stmt = select(Vehicle).where(Vehicle.driver_uuid == driver_uuid)
        if lock:
            stmt = stmt.with_for_update()
        vehicle = (await self.session.execute(stmt)).scalar_one_or_none()
        if vehicle is None:
            raise VehicleNotFound(driver_uuid)
        return vehicle.vehicle_seats

    async def validate_driver_vehicle(self, driver_uuid: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(Vehicle).where(Vehicle.driver_uuid == driver_uuid)
        )
        return result.scalar_one() > 0

    async def is_driver_assigned(self, driver_uuid: uuid.UUID) -> bool:
        return await self.count_assigned_students_by_driver(driver_uuid) > 0

    async def route_of_driver(self, driver_uuid: uuid.UUID) -> uuid.UUID | None:
        """Route the driver is currently bound to, if any."""
        result = await self.session.execute(
            select(RouteAssignment.route_uuid).where(
                RouteAssignment.driver_uuid == driver_uuid,
                RouteAssignment.deleted_at.is_(None),
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def is_student_assigned(self, student_uuid: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(RouteAssignment).where(
                RouteAssignment.student_uuid == student_uuid,
                RouteAssignment.deleted_at.is_(None),
            )
        )
        return result.scalar_one() > 0

    async def count_assigned_students_by_driver(self, driver_uuid: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(RouteAssignment).where(
                RouteAssignment.driver_uuid == driver_uuid,
                RouteAssignment.deleted_at.is_(None),
            )
        )
        return result.scalar_one()

    async def get_student(self, student_uuid: uuid.UUID) -> Student | None:
        return await self.session.get(Student, student_uuid)

    # ---- routes ----

    async def add_route(self, route: Route) -> uuid.UUID:
        self.session.add(route)
        await self.session.flush()
        return route.route_uuid

    async def route_exists(self, route_uuid: uuid.UUID, school_uuid: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(Route).where(
                Route.route_uuid == route_uuid, Route.school_uuid == school_uuid,
            )
        )
        return result.scalar_one() > 0

    async def update_route_details(
        self,
        route_uuid: uuid.UUID,
        school_uuid: uuid.UUID,
        name: str,
        description: str,
        updated_by: str,
    ) -> int:
        """Rename and re-describe a route; returns the number of rows matched."""
        result = await self.session.execute(
            update(Route)
            .where(Route.route_uuid == route_uuid, Route.school_uuid == school_uuid)
            .values(name=name, description=description, updated_by=updated_by, updated_at=utcnow())
        )
        return result.rowcount

    async def delete_route_assignments(self, route_uuid: uuid.UUID, school_uuid: uuid.UUID) -> None:
        await self.session.execute(
            delete(RouteAssignment).where(
                RouteAssignment.route_uuid == route_uuid,
                RouteAssignment.school_uuid == school_uuid,
            )
        )

    async def delete_route(self, route_uuid: uuid.UUID, school_uuid: uuid.UUID) -> None:
        await self.session.execute(
            delete(Route).where(Route.route_uuid == route_uuid, Route.school_uuid == school_uuid)
        )

    async def count_routes(self, school_uuid: uuid.UUID | None = None) -> int:
        """Number of routes of one school, or of every school when ``None``."""
        stmt = select(func.count()).select_from(Route)
        if school_uuid is not None:
            stmt = stmt.where(Route.school_uuid == school_uuid)
        return (await self.session.execute(stmt)).scalar_one()

    async def fetch_routes(
        self,
        school_uuid: uuid.UUID | None,
        offset: int,
        limit: int,
        sort_by: str = "route_name",
        direction: str = "asc",
    ) -> list[Route]:
        column = SORT_FIELDS[sort_by]
        order = column.desc() if direction == "desc" else column.asc()
        stmt = select(Route)
        if school_uuid is not None:
            stmt = stmt.where(Route.school_uuid == school_uuid)
        result = await self.session.execute(
            stmt.order_by(order, Route.route_uuid).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    async def fetch_route(self, route_uuid: uuid.UUID, school_uuid: uuid.UUID) -> Route | None:
        result = await self.session.execute(
            select(Route).where(Route.route_uuid == route_uuid, Route.school_uuid == school_uuid)
        )
        return result.scalar_one_or_none()

    async def fetch_route_assignments(
        self, route_uuid: uuid.UUID,
    ) -> list[tuple[RouteAssignment, Driver, Student]]:
        """Active assignments of a route with driver and student, in pickup order."""
        result = await self.session.execute(
            select(RouteAssignment, Driver, Student)
            .join(Driver, Driver.user_uuid == RouteAssignment.driver_uuid)
            .join(Student, Student.student_uuid == RouteAssignment.student_uuid)
            .where(
                RouteAssignment.route_uuid == route_uuid,
                RouteAssignment.deleted_at.is_(None),
            )
            .order_by(RouteAssignment.driver_uuid, RouteAssignment.student_order)
        )
        return [tuple(row) for row in result.all()]

    # ---- assignments ----

    async def add_assignment(self, assignment: RouteAssignment) -> None:
        """Insert an assignment after checking that driver and student exist."""
        if await self.session.get(Driver, assignment.driver_uuid) is None:
            raise DriverNotFound()
        if await self.session.get(Student, assignment.student_uuid) is None:
            raise StudentNotFound()
        self.session.add(assignment)
        await self.session.flush()

    async def delete_student_from_route(
        self, route_uuid: uuid.UUID, student_uuid: uuid.UUID, school_uuid: uuid.UUID,
    ) -> int:
        result = await self.session.execute(
            delete(RouteAssignment).where(
                RouteAssignment.route_uuid == route_uuid,
                RouteAssignment.student_uuid == student_uuid,
                RouteAssignment.school_uuid == school_uuid,
            )
        )
        return result.rowcount

    async def max_student_order(self, route_uuid: uuid.UUID, driver_uuid: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(RouteAssignment.student_order), 0)).where(
                RouteAssignment.route_uuid == route_uuid,
                RouteAssignment.driver_uuid == driver_uuid,
                RouteAssignment.deleted_at.is_(None),
            )
        )
        return result.scalar_one()

    async def student_orders(self, route_uuid: uuid.UUID, driver_uuid: uuid.UUID) -> list[int]:
        result = await self.session.execute(
            select(RouteAssignment.student_order).where(
                RouteAssignment.route_uuid == route_uuid,
                RouteAssignment.driver_uuid == driver_uuid,
                RouteAssignment.deleted_at.is_(None),
            )
        )
        return list(result.scalars().all())

    async def duplicate_orders(self, route_uuid: uuid.UUID) -> list[tuple[uuid.UUID, int]]:
        """(driver, order) pairs of the route held by more than one student."""
        result = await self.session.execute(
            select(RouteAssignment.driver_uuid, RouteAssignment.student_order)
            .where(
                RouteAssignment.route_uuid == route_uuid,
                RouteAssignment.deleted_at.is_(None),
            )
            .group_by(RouteAssignment.driver_uuid, RouteAssignment.student_order)
            .having(func.count() > 1)
        )
        return [tuple(row) for row in result.all()]

    async def apply_student_order(
        self, route_uuid: uuid.UUID, student_uuid: uuid.UUID, order: int, updated_by: str,
    ) -> int:
        result = await self.session.execute(
            update(RouteAssignment)
            .where(
                RouteAssignment.route_uuid == route_uuid,
                RouteAssignment.student_uuid == student_uuid,
            )
            .values(student_order=order, updated_by=updated_by, updated_at=utcnow())
        )
        return result.rowcount

    async def get_active_assignment(self, student_uuid: uuid.UUID) -> RouteAssignment | None:
        result = await self.session.execute(
            select(RouteAssignment).where(
                RouteAssignment.student_uuid == student_uuid,
                RouteAssignment.deleted_at.is_(None),
            )
        )
        return result.scalars().first()

    async def shift_orders(
        self,
        route_uuid: uuid.UUID,
        driver_uuid: uuid.UUID,
        lower: int,
        upper: int,
        delta: int,
    ) -> int:
        """Add ``delta`` to every order in ``[lower, upper]`` within (route, driver)."""
        result = await self.session.execute(
            update(RouteAssignment)
            .where(
                RouteAssignment.route_uuid == route_uuid,
                RouteAssignment.driver_uuid == driver_uuid,
                RouteAssignment.deleted_at.is_(None),
                RouteAssignment.student_order >= lower,
                RouteAssignment.student_order <= upper,
            )
            .values(student_order=RouteAssignment.student_order + delta)
        )
        return result.rowcount

    # ---- shuttle status ----

    async def today_shuttle(self, student_uuid: uuid.UUID) -> Shuttle | None:
        result = await self.session.execute(
            select(Shuttle)
            .where(Shuttle.student_uuid == student_uuid, Shuttle.created_at >= start_of_day())
            .order_by(Shuttle.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add_shuttle(self, shuttle: Shuttle) -> None:
        self.session.add(shuttle)
        await self.session.flush()

    async def device_token(self, user_uuid: uuid.UUID) -> str | None:
        result = await self.session.execute(
            select(DeviceToken.device_token).where(DeviceToken.user_uuid == user_uuid)
        )
        return result.scalar_one_or_none()

    async def fetch_parent_shuttles(
        self, parent_uuid: uuid.UUID,
    ) -> list[tuple[Student, Shuttle | None]]:
        result = await self.session.execute(
            select(Student, Shuttle)
            .outerjoin(
                Shuttle,
                and_(
                    Shuttle.student_uuid == Student.student_uuid,
                    Shuttle.created_at >= start_of_day(),
                ),
            )
            .where(Student.parent_uuid == parent_uuid)
            .order_by(Student.first_name)
        )
        return [tuple(row) for row in result.all()]

    async def count_parent_history(self, parent_uuid: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Shuttle)
            .join(Student, Student.student_uuid == Shuttle.student_uuid)
            .where(Student.parent_uuid == parent_uuid)
        )
        return result.scalar_one()

    async def fetch_parent_history(
        self,
        parent_uuid: uuid.UUID,
        offset: int,
        limit: int,
        sort_by: str = "created_at",
        direction: str = "asc",
    ) -> list[tuple[Shuttle, Student]]:
        """Every ride row of the parent's children, not only today's."""
        column = SHUTTLE_SORT_FIELDS[sort_by]
        order = column.desc() if direction == "desc" else column.asc()
        result = await self.session.execute(
            select(Shuttle, Student)
            .join(Student, Student.student_uuid == Shuttle.student_uuid)
            .where(Student.parent_uuid == parent_uuid)
            .order_by(order, Shuttle.shuttle_uuid)
            .offset(offset)
            .limit(limit)
        )
        return [tuple(row) for row in result.all()]

    async def fetch_driver_shuttles(self, driver_uuid: uuid.UUID) -> list[tuple[Shuttle, Student]]:
        """Today's ride rows recorded by the driver."""
        result = await self.session.execute(
            select(Shuttle, Student)
            .join(Student, Student.student_uuid == Shuttle.student_uuid)
            .where(Shuttle.driver_uuid == driver_uuid, Shuttle.created_at >= start_of_day())
            .order_by(Shuttle.created_at, Shuttle.shuttle_uuid)
        )
        return [tuple(row) for row in result.all()]

    async def fetch_shuttle(self, shuttle_uuid: uuid.UUID) -> tuple[Shuttle, Student] | None:
        result = await self.session.execute(
            select(Shuttle, Student)
            .join(Student, Student.student_uuid == Shuttle.student_uuid)
            .where(Shuttle.shuttle_uuid == shuttle_uuid)
        )
        row = result.first()
        return tuple(row) if row is not None else None

    async def delete_shuttles_before(self, cutoff: datetime.datetime) -> int:
        result = await self.session.execute(
            delete(Shuttle).where(Shuttle.created_at < cutoff)
        )
        return result.rowcount

    async def fetch_driver_students(
        self, driver_uuid: uuid.UUID, present_only: bool = True,
    ) -> list[tuple[RouteAssignment, Student, School, Shuttle | None]]:
        """A driver's active assignments in pickup order, with today's shuttle row."""
        stmt = (
            select(RouteAssignment, Student, School, Shuttle)
            .join(Student, Student.student_uuid == RouteAssignment.student_uuid)
            .join(School, School.school_uuid == RouteAssignment.school_uuid)
            .outerjoin(
                Shuttle,
                and_(
                    Shuttle.student_uuid == RouteAssignment.student_uuid,
                    Shuttle.created_at >= start_of_day(),
                ),
            )
            .where(
                RouteAssignment.driver_uuid == driver_uuid,
                RouteAssignment.deleted_at.is_(None),
            )
            .order_by(RouteAssignment.student_order)
        )
        if present_only:
            stmt = stmt.where(Student.status == "present")
        result = await self.session.execute(stmt)
        return [tuple(row) for row in result.all()]
