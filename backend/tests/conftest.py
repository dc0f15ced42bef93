"""Shared fixtures: an in-memory database seeded with one school's fleet."""

import uuid
from dataclasses import dataclass, field

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shuttle.core.context import RequestContext
from shuttle.models.base import Base
from shuttle.models.tables import Driver, Route, RouteAssignment, School, Student, Vehicle

# Around a school in Yogyakarta
SCHOOL_POINT = (-7.715987, 110.407012)
PICKUPS = [
    (-7.711580, 110.413494),
    (-7.763653, 110.422366),
    (-7.703233, 110.431055),
    (-7.720112, 110.390871),
    (-7.731509, 110.401337),
    (-7.698724, 110.415562),
    (-7.742001, 110.377420),
    (-7.709315, 110.366102),
]


@dataclass
class Fleet:
    session_factory: async_sessionmaker[AsyncSession]
    school: uuid.UUID
    parent: uuid.UUID
    small_driver: uuid.UUID  # 2 seats
    big_driver: uuid.UUID  # 6 seats
    idle_driver: uuid.UUID  # no vehicle
    students: list[uuid.UUID] = field(default_factory=list)

    @property
    def ctx(self) -> RequestContext:
        return RequestContext(user_name="admin", school_uuid=self.school)

    def driver_ctx(self, driver_uuid: uuid.UUID) -> RequestContext:
        return RequestContext(user_uuid=driver_uuid, user_name="driver", school_uuid=self.school)

    async def orders(self, route_uuid: uuid.UUID) -> dict[uuid.UUID, int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RouteAssignment.student_uuid, RouteAssignment.student_order)
                .where(RouteAssignment.route_uuid == route_uuid)
            )
            return {student: order for student, order in result.all()}

    async def count(self, model) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return result.scalar_one()

    async def route_count(self) -> int:
        return await self.count(Route)

    async def assignment_count(self) -> int:
        return await self.count(RouteAssignment)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def fleet(session_factory) -> Fleet:
    school = School(name="SD Harapan", lat=SCHOOL_POINT[0], lon=SCHOOL_POINT[1])
    small = Driver(first_name="Budi", last_name="Santoso")
    big = Driver(first_name="Sri", last_name="Wahyuni")
    idle = Driver(first_name="Agus", last_name="Pratama")
    parent = uuid.uuid4()

    async with session_factory() as session:
        async with session.begin():
            session.add(school)
            await session.flush()
            for driver in (small, big, idle):
                driver.school_uuid = school.school_uuid
                session.add(driver)
            await session.flush()
            session.add_all([
                Vehicle(school_uuid=school.school_uuid, vehicle_number="AB 1234 XY",
                        vehicle_seats=2, driver_uuid=small.user_uuid),
                Vehicle(school_uuid=school.school_uuid, vehicle_number="AB 5678 XY",
                        vehicle_seats=6, driver_uuid=big.user_uuid),
            ])
            students = [
                Student(
                    school_uuid=school.school_uuid,
                    parent_uuid=parent if i < 2 else uuid.uuid4(),
                    first_name=f"Student{i}",
                    pickup_lat=lat,
                    pickup_lon=lon,
                )
                for i, (lat, lon) in enumerate(PICKUPS)
            ]
            session.add_all(students)
            await session.flush()

    return Fleet(
        session_factory=session_factory,
        school=school.school_uuid,
        parent=parent,
        small_driver=small.user_uuid,
        big_driver=big.user_uuid,
        idle_driver=idle.user_uuid,
        students=[s.student_uuid for s in students],
    )
