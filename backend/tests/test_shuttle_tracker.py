import datetime
import uuid

import orjson
import pytest

from shuttle.config import settings
from shuttle.core.broadcaster import CHANNEL, STATE_KEY, Broadcaster
from shuttle.core.context import RequestContext
from shuttle.core.errors import ShuttleNotFound, StudentNotFound, ValidationError
from shuttle.core.route_engine import RouteAssignmentEngine
from shuttle.core.scheduler import create_scheduler
from shuttle.core.shuttle_tracker import STATUS_MESSAGES, ShuttleTracker
from shuttle.models.tables import DeviceToken, Shuttle
from shuttle.schemas.route import DriverAssignmentIn, RouteCreate, StudentOrderIn
from shuttle.schemas.shuttle import ShuttleStatus

pytestmark = pytest.mark.anyio


@pytest.fixture
async def tracker(fleet):
    engine = RouteAssignmentEngine(fleet.session_factory)
    await engine.add_route(fleet.ctx, RouteCreate(
        route_name="Morning",
        route_assignment=[DriverAssignmentIn(
            driver_uuid=fleet.big_driver,
            students=[
                StudentOrderIn(student_uuid=s, student_order=i + 1)
                for i, s in enumerate(fleet.students[:3])
            ],
        )],
    ))
    async with fleet.session_factory() as session:
        async with session.begin():
            session.add(DeviceToken(user_uuid=fleet.parent, device_token="fcm-token-1"))

    # Not connected to Redis: events only reach local subscribers
    return ShuttleTracker(fleet.session_factory, Broadcaster())


async def test_update_status_publishes_event(tracker, fleet):
    queue = tracker.broadcaster.subscribe()
    student = fleet.students[0]

    event = await tracker.update_status(
        fleet.driver_ctx(fleet.big_driver), student, ShuttleStatus.GOING_TO_SCHOOL,
    )

    assert event.parent_uuid == fleet.parent
    assert event.device_token == "fcm-token-1"
    assert event.body == STATUS_MESSAGES[ShuttleStatus.GOING_TO_SCHOOL]

    payload = orjson.loads(queue.get_nowait())
    assert payload["type"] == "status"
    assert payload["student_uuid"] == str(student)
    assert payload["status"] == "going_to_school"


async def test_status_is_one_row_per_day(tracker, fleet):
    ctx = fleet.driver_ctx(fleet.big_driver)
    student = fleet.students[1]

    first = await tracker.update_status(ctx, student, ShuttleStatus.WAITING_TO_SCHOOL)
    second = await tracker.update_status(ctx, student, ShuttleStatus.AT_SCHOOL)

    assert first.shuttle_uuid == second.shuttle_uuid
    assert await fleet.count(Shuttle) == 1


async def test_missing_device_token_still_publishes(tracker, fleet):
    queue = tracker.broadcaster.subscribe()
    # students[2] has a different parent with no registered token
    event = await tracker.update_status(
        fleet.driver_ctx(fleet.big_driver), fleet.students[2], ShuttleStatus.GOING_TO_HOME,
    )
    assert event.device_token is None
    assert not queue.empty()


async def test_only_assigned_driver_may_update(tracker, fleet):
    with pytest.raises(StudentNotFound):
        await tracker.update_status(
            fleet.driver_ctx(fleet.small_driver), fleet.students[0], ShuttleStatus.HOME,
        )
    with pytest.raises(StudentNotFound):
        await tracker.update_status(
            fleet.driver_ctx(fleet.big_driver), fleet.students[6], ShuttleStatus.HOME,
        )
    with pytest.raises(ValidationError):
        await tracker.update_status(fleet.ctx, fleet.students[0], ShuttleStatus.HOME)
    assert await fleet.count(Shuttle) == 0


async def test_track_for_parent(tracker, fleet):
    await tracker.update_status(
        fleet.driver_ctx(fleet.big_driver), fleet.students[0], ShuttleStatus.AT_SCHOOL,
    )

    tracks = await tracker.track_for_parent(fleet.parent)

    assert [t.student_uuid for t in tracks] == fleet.students[:2]
    assert tracks[0].status == ShuttleStatus.AT_SCHOOL
    assert tracks[0].updated_at is not None
    assert tracks[1].status is None
    assert tracks[1].shuttle_uuid is None


async def test_purge_stale(tracker, fleet):
    old = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=40)
    async with fleet.session_factory() as session:
        async with session.begin():
            session.add(Shuttle(
                student_uuid=fleet.students[1],
                driver_uuid=fleet.big_driver,
                school_uuid=fleet.school,
                status=ShuttleStatus.HOME.value,
                created_at=old,
            ))
    await tracker.update_status(
        fleet.driver_ctx(fleet.big_driver), fleet.students[0], ShuttleStatus.HOME,
    )

    assert await tracker.purge_stale(30) == 1
    assert await fleet.count(Shuttle) == 1


async def test_purge_job_is_scheduled(tracker):
    scheduler = create_scheduler(tracker)
    [job] = scheduler.get_jobs()
    assert job.id == "purge_shuttles"
    assert job.args == (settings.shuttle_retention_days,)


class RecordingRedis:
    """Stands in for the Redis client, keeping what was written."""

    def __init__(self):
        self.hashes: dict[str, dict[str, bytes]] = {}
        self.published: list[tuple[str, bytes]] = []

    async def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value

    async def publish(self, channel, message):
        self.published.append((channel, message))


async def test_device_token_only_reaches_push_channel(tracker, fleet):
    redis = RecordingRedis()
    tracker.broadcaster._redis = redis
    queue = tracker.broadcaster.subscribe()
    student = fleet.students[0]

    await tracker.update_status(
        fleet.driver_ctx(fleet.big_driver), student, ShuttleStatus.AT_SCHOOL,
    )

    [(channel, message)] = redis.published
    assert channel == CHANNEL
    assert orjson.loads(message)["device_token"] == "fcm-token-1"

    state = orjson.loads(redis.hashes[STATE_KEY][str(student)])
    assert "device_token" not in state
    assert state["status"] == "at_school"

    streamed = orjson.loads(queue.get_nowait())
    assert "device_token" not in streamed


async def add_old_ride(fleet, student: uuid.UUID, days: int) -> None:
    created = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=days)
    async with fleet.session_factory() as session:
        async with session.begin():
            session.add(Shuttle(
                student_uuid=student,
                driver_uuid=fleet.big_driver,
                school_uuid=fleet.school,
                status=ShuttleStatus.HOME.value,
                created_at=created,
            ))


async def test_history_for_parent(tracker, fleet):
    await add_old_ride(fleet, fleet.students[1], days=3)
    await tracker.update_status(
        fleet.driver_ctx(fleet.big_driver), fleet.students[0], ShuttleStatus.GOING_TO_SCHOOL,
    )
    # Not this parent's child
    await tracker.update_status(
        fleet.driver_ctx(fleet.big_driver), fleet.students[2], ShuttleStatus.GOING_TO_SCHOOL,
    )

    history = await tracker.history_for_parent(fleet.parent)
    assert [r.student_uuid for r in history.data] == fleet.students[:2][::-1]
    assert history.data[0].status == ShuttleStatus.HOME
    assert history.meta.total_items == 2

    second = await tracker.history_for_parent(fleet.parent, page=2, limit=1)
    assert [r.student_uuid for r in second.data] == [fleet.students[0]]
    assert second.meta.showing == "Showing 2-2 of 2"

    newest_first = await tracker.history_for_parent(fleet.parent, direction="desc")
    assert newest_first.data[0].student_uuid == fleet.students[0]


async def test_history_rejects_unknown_sort(tracker, fleet):
    with pytest.raises(ValidationError):
        await tracker.history_for_parent(fleet.parent, sort_by="student_uuid")


async def test_shuttles_for_driver_today_only(tracker, fleet):
    await add_old_ride(fleet, fleet.students[1], days=3)
    ctx = fleet.driver_ctx(fleet.big_driver)
    await tracker.update_status(ctx, fleet.students[0], ShuttleStatus.WAITING_TO_SCHOOL)
    await tracker.update_status(ctx, fleet.students[2], ShuttleStatus.GOING_TO_SCHOOL)

    rides = await tracker.shuttles_for_driver(fleet.big_driver)
    assert [r.student_uuid for r in rides] == [fleet.students[0], fleet.students[2]]
    assert await tracker.shuttles_for_driver(fleet.small_driver) == []


async def test_get_shuttle_visibility(tracker, fleet):
    event = await tracker.update_status(
        fleet.driver_ctx(fleet.big_driver), fleet.students[0], ShuttleStatus.AT_SCHOOL,
    )

    for ctx in (
        fleet.driver_ctx(fleet.big_driver),
        RequestContext(user_uuid=fleet.parent),
        fleet.ctx,
    ):
        record = await tracker.get_shuttle(ctx, event.shuttle_uuid)
        assert record.student_uuid == fleet.students[0]
        assert record.status == ShuttleStatus.AT_SCHOOL

    with pytest.raises(ShuttleNotFound):
        await tracker.get_shuttle(
            RequestContext(user_uuid=uuid.uuid4(), school_uuid=uuid.uuid4()), event.shuttle_uuid,
        )
    with pytest.raises(ShuttleNotFound):
        await tracker.get_shuttle(fleet.ctx, uuid.uuid4())
