"""Drag-and-drop relocation of one student within a driver's pickup list.

The persisted ``student_order`` values are the list. Moving a student from
``current`` to ``new`` shifts the block in between by one place:

* ``new < current``: orders in ``[new, current)`` move down the list (+1)
* ``new > current``: orders in ``(current, new]`` move up the list (-1)

then the student takes ``new``. The shift is confined to the student's own
(route, driver) pair.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shuttle.core.context import RequestContext, require_school
from shuttle.core.errors import InvalidStudentOrder, StudentNotFound
from shuttle.core.repository import transaction, utcnow

logger = logging.getLogger(__name__)


class StudentOrderManager:
    """Moves a student to a new position, shifting the students in between."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def move_student(
        self,
        ctx: RequestContext,
        student_uuid: uuid.UUID,
        new_order: int,
    ) -> int:
        """Relocate ``student_uuid`` to ``new_order`` and return the final order.

        ``new_order`` past the end of the list is clamped to the last place.
        Only students of the acting school can be moved.
        """
        school_uuid = require_school(ctx)
        if new_order < 1:
            raise InvalidStudentOrder(f"Invalid student order {new_order}")

        async with transaction(self.session_factory) as repo:
            assignment = await repo.get_active_assignment(student_uuid)
            if assignment is None or assignment.school_uuid != school_uuid:
                logger.info("No active assignment for student %s in school %s", student_uuid, school_uuid)
                raise StudentNotFound()

            route_uuid = assignment.route_uuid
            driver_uuid = assignment.driver_uuid
            current = assignment.student_order
            new_order = min(new_order, await repo.max_student_order(route_uuid, driver_uuid))

            if new_order == current:
                return current

            if new_order < current:
                shifted = await repo.shift_orders(route_uuid, driver_uuid, new_order, current - 1, +1)
            else:
                shifted = await repo.shift_orders(route_uuid, driver_uuid, current + 1, new_order, -1)

            assignment.student_order = new_order
            assignment.updated_at = utcnow()
            assignment.updated_by = ctx.user_name
            await repo.session.flush()

        logger.info(
            "Student %s moved %d -> %d on route %s (%d shifted)",
            student_uuid, current, new_order, route_uuid, shifted,
        )
        return new_order
