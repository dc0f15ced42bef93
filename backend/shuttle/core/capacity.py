"""Seat-capacity and exclusivity checks for route assignments.

Everything here is a pure check: callers fetch the counts and flags from
storage and keep the running assigned count up to date themselves.
"""

import logging
import uuid
from collections.abc import Iterable

from shuttle.core.errors import (
    CapacityExceeded,
    DriverAlreadyAssigned,
    DuplicateStudentInRequest,
    InvalidStudentOrder,
    StudentAlreadyAssigned,
)

logger = logging.getLogger(__name__)


def find_duplicate_students(student_blocks: Iterable[Iterable[uuid.UUID]]) -> None:
    """Reject a request listing the same student twice, across all drivers."""
    seen: set[uuid.UUID] = set()
    for students in student_blocks:
        for student_uuid in students:
            if student_uuid in seen:
                logger.info("Student %s listed more than once in request", student_uuid)
                raise DuplicateStudentInRequest()
            seen.add(student_uuid)


def check_student_orders(orders: Iterable[int]) -> None:
    """Orders within one driver's list must be positive and distinct."""
    seen: set[int] = set()
    for order in orders:
        if order is None or order < 1:
            raise InvalidStudentOrder("Student order cannot be empty or zero")
        if order in seen:
            raise InvalidStudentOrder(f"Student order {order} used more than once")
        seen.add(order)


def ensure_driver_available(driver_uuid: uuid.UUID, driver_assigned: bool) -> None:
    if driver_assigned:
        logger.info("Driver %s already bound to a route", driver_uuid)
        raise DriverAlreadyAssigned()


def validate_assignment(
    driver_uuid: uuid.UUID,
    vehicle_seats: int,
    assigned_count: int,
    student_uuid: uuid.UUID,
    student_assigned: bool,
) -> None:
    """Check that one more student fits under ``driver_uuid``."""
    if student_assigned:
        logger.info("Student %s already assigned to a route", student_uuid)
        raise StudentAlreadyAssigned()
    if assigned_count + 1 > vehicle_seats:
        logger.info(
            "Seat capacity reached for driver %s: %d/%d",
            driver_uuid, assigned_count, vehicle_seats,
        )
        raise CapacityExceeded(vehicle_seats)
