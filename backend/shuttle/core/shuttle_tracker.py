"""Daily shuttle ride status per student, with parent notifications.

The driver moves each student through the statuses of a school day. Every
change is stored (one row per student per day) and handed to the
broadcaster, which feeds the WebSocket stream and the push worker.
"""

import datetime
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shuttle.core.broadcaster import Broadcaster
from shuttle.core.context import RequestContext
from shuttle.core.errors import ShuttleNotFound, StudentNotFound, ValidationError
from shuttle.core.pagination import check_paging, page_meta
from shuttle.core.repository import SHUTTLE_SORT_FIELDS, transaction, utcnow
from shuttle.models.tables import Shuttle, Student
from shuttle.schemas.shuttle import (
    ShuttleEvent,
    ShuttlePage,
    ShuttleRecord,
    ShuttleStatus,
    ShuttleTrack,
)

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "Shuttle update"

STATUS_MESSAGES = {
    ShuttleStatus.HOME: "Your student is at home.",
    ShuttleStatus.WAITING_TO_SCHOOL: "The school driver is on the way to pick your children up.",
    ShuttleStatus.GOING_TO_SCHOOL: "Your children are on the way to school.",
    ShuttleStatus.AT_SCHOOL: "Your children have arrived at school.",
    ShuttleStatus.WAITING_TO_HOME: "The school driver is on the way to take your children home.",
    ShuttleStatus.GOING_TO_HOME: "Your children are on the way home.",
}


def _record(shuttle: Shuttle, student: Student) -> ShuttleRecord:
    return ShuttleRecord(
        shuttle_uuid=shuttle.shuttle_uuid,
        student_uuid=student.student_uuid,
        student_first_name=student.first_name,
        student_last_name=student.last_name,
        parent_uuid=student.parent_uuid,
        driver_uuid=shuttle.driver_uuid,
        school_uuid=shuttle.school_uuid,
        status=shuttle.status,
        created_at=shuttle.created_at,
        updated_at=shuttle.updated_at,
    )


class ShuttleTracker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broadcaster: Broadcaster,
    ) -> None:
        self.session_factory = session_factory
        self.broadcaster = broadcaster

    async def update_status(
        self,
        ctx: RequestContext,
        student_uuid: uuid.UUID,
        status: ShuttleStatus,
    ) -> ShuttleEvent:
        """Record ``status`` for the student's ride today and notify the parent.

        Only the driver the student is assigned to may change it.
        """
        driver_uuid = ctx.user_uuid
        if driver_uuid is None:
            raise ValidationError("Request is not bound to a driver")

        async with transaction(self.session_factory) as repo:
            assignment = await repo.get_active_assignment(student_uuid)
            if assignment is None or assignment.driver_uuid != driver_uuid:
                raise StudentNotFound()
            student = await repo.get_student(student_uuid)

            now = utcnow()
            shuttle = await repo.today_shuttle(student_uuid)
            if shuttle is None:
                shuttle = Shuttle(
                    student_uuid=student_uuid,
                    driver_uuid=driver_uuid,
                    school_uuid=assignment.school_uuid,
                    status=status.value,
                    created_at=now,
                )
                await repo.add_shuttle(shuttle)
            else:
                shuttle.status = status.value
                shuttle.updated_at = now

            token = await repo.device_token(student.parent_uuid)

        event = ShuttleEvent(
            shuttle_uuid=shuttle.shuttle_uuid,
            student_uuid=student_uuid,
            parent_uuid=student.parent_uuid,
            driver_uuid=driver_uuid,
            status=status,
            title=NOTIFICATION_TITLE,
            body=STATUS_MESSAGES[status],
            device_token=token,
            timestamp=now,
        )
        if token is None:
            logger.warning("No device token for parent %s", student.parent_uuid)
        await self.broadcaster.publish(
            event.model_dump(mode="json", exclude={"device_token"}),
            push=event.model_dump(mode="json"),
        )
        logger.info("Student %s shuttle status -> %s", student_uuid, status.value)
        return event

    async def track_for_parent(self, parent_uuid: uuid.UUID) -> list[ShuttleTrack]:
        """Today's ride status of each of the parent's children."""
        async with transaction(self.session_factory) as repo:
            rows = await repo.fetch_parent_shuttles(parent_uuid)
        return [
            ShuttleTrack(
                student_uuid=student.student_uuid,
                student_first_name=student.first_name,
                student_last_name=student.last_name,
                shuttle_uuid=shuttle.shuttle_uuid if shuttle else None,
                status=shuttle.status if shuttle else None,
                updated_at=(shuttle.updated_at or shuttle.created_at) if shuttle else None,
            )
            for student, shuttle in rows
        ]

    async def history_for_parent(
        self,
        parent_uuid: uuid.UUID,
        page: int = 1,
        limit: int | None = None,
        sort_by: str = "created_at",
        direction: str = "asc",
    ) -> ShuttlePage:
        """Every recorded ride of the parent's children, paginated."""
        limit = check_paging(page, limit, sort_by, SHUTTLE_SORT_FIELDS, direction)
        async with transaction(self.session_factory) as repo:
            total = await repo.count_parent_history(parent_uuid)
            rows = await repo.fetch_parent_history(
                parent_uuid, (page - 1) * limit, limit, sort_by, direction,
            )
        return ShuttlePage(
            data=[_record(shuttle, student) for shuttle, student in rows],
            meta=page_meta(page, limit, total, len(rows)),
        )

    async def shuttles_for_driver(self, driver_uuid: uuid.UUID) -> list[ShuttleRecord]:
        """Rides the driver has recorded today."""
        async with transaction(self.session_factory) as repo:
            rows = await repo.fetch_driver_shuttles(driver_uuid)
        return [_record(shuttle, student) for shuttle, student in rows]

    async def get_shuttle(self, ctx: RequestContext, shuttle_uuid: uuid.UUID) -> ShuttleRecord:
        """One ride, visible to its driver, the student's parent and the school."""
        async with transaction(self.session_factory) as repo:
            row = await repo.fetch_shuttle(shuttle_uuid)
        if row is None:
            raise ShuttleNotFound()
        shuttle, student = row
        allowed = (
            ctx.user_uuid in (shuttle.driver_uuid, student.parent_uuid)
            or ctx.school_uuid == shuttle.school_uuid
        )
        if not allowed:
            raise ShuttleNotFound()
        return _record(shuttle, student)

    async def purge_stale(self, retention_days: int) -> int:
        """Delete ride rows older than ``retention_days`` and reset live state."""
        cutoff = utcnow() - datetime.timedelta(days=retention_days)
        async with transaction(self.session_factory) as repo:
            deleted = await repo.delete_shuttles_before(cutoff)
        await self.broadcaster.clear_state()
        logger.info("Purged %d shuttle row(s) older than %s", deleted, cutoff.date())
        return deleted
