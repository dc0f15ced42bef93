import datetime
import uuid

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from shuttle.models.base import Base


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class School(Base):
    __tablename__ = "schools"

    school_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)  # drop-off point
    lon: Mapped[float] = mapped_column(Float, nullable=False)


class Driver(Base):
    __tablename__ = "drivers"

    user_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    school_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("schools.school_uuid"), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)


class Vehicle(Base):
    __tablename__ = "vehicles"

    vehicle_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    school_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("schools.school_uuid"), nullable=False)
    vehicle_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    vehicle_number: Mapped[str] = mapped_column(String(20), nullable=False)
    vehicle_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    # A driver has at most one vehicle
    driver_uuid: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("drivers.user_uuid"), nullable=True, unique=True
    )


class Student(Base):
    __tablename__ = "students"
    __table_args__ = (
        Index("ix_students_parent", "parent_uuid"),
    )

    student_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    school_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("schools.school_uuid"), nullable=False)
    parent_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="present")  # present, absent
    address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    pickup_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_lon: Mapped[float | None] = mapped_column(Float, nullable=True)


class Route(Base):
    __tablename__ = "routes"
    __table_args__ = (
        Index("ix_routes_school", "school_uuid"),
    )

    route_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    school_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("schools.school_uuid"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)


class RouteAssignment(Base):
    __tablename__ = "route_assignments"
    __table_args__ = (
        # No unique index on student_order: the reorder shifts pass through
        # transient duplicates inside one transaction.
        Index("ix_ra_route_driver_order", "route_uuid", "driver_uuid", "student_order"),
        Index("ix_ra_driver", "driver_uuid"),
        Index("ix_ra_student", "student_uuid"),
    )

    assignment_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    route_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("routes.route_uuid"), nullable=False)
    driver_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("drivers.user_uuid"), nullable=False)
    student_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.student_uuid"), nullable=False)
    school_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("schools.school_uuid"), nullable=False)
    student_order: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    deleted_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Shuttle(Base):
    __tablename__ = "shuttles"
    __table_args__ = (
        Index("ix_shuttle_student_created", "student_uuid", "created_at"),
    )

    shuttle_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.student_uuid"), nullable=False)
    driver_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("drivers.user_uuid"), nullable=False)
    school_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("schools.school_uuid"), nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class DeviceToken(Base):
    __tablename__ = "device_tokens"
    __table_args__ = (
        UniqueConstraint("user_uuid", name="uq_device_token_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    device_token: Mapped[str] = mapped_column(String(255), nullable=False)
