import datetime
import enum
import uuid

from pydantic import BaseModel

from shuttle.schemas.route import PageMeta


class ShuttleStatus(str, enum.Enum):
    HOME = "home"
    WAITING_TO_SCHOOL = "waiting_to_be_taken_to_school"
    GOING_TO_SCHOOL = "going_to_school"
    AT_SCHOOL = "at_school"
    WAITING_TO_HOME = "waiting_to_be_taken_to_home"
    GOING_TO_HOME = "going_to_home"


class ShuttleStatusUpdate(BaseModel):
    status: ShuttleStatus


class ShuttleEvent(BaseModel):
    type: str = "status"
    shuttle_uuid: uuid.UUID
    student_uuid: uuid.UUID
    parent_uuid: uuid.UUID
    driver_uuid: uuid.UUID
    status: ShuttleStatus
    title: str
    body: str
    device_token: str | None = None
    timestamp: datetime.datetime


class ShuttleTrack(BaseModel):
    student_uuid: uuid.UUID
    student_first_name: str
    student_last_name: str
    shuttle_uuid: uuid.UUID | None = None
    status: ShuttleStatus | None = None
    updated_at: datetime.datetime | None = None


class ShuttleRecord(BaseModel):
    shuttle_uuid: uuid.UUID
    student_uuid: uuid.UUID
    student_first_name: str
    student_last_name: str
    parent_uuid: uuid.UUID
    driver_uuid: uuid.UUID
    school_uuid: uuid.UUID
    status: ShuttleStatus
    created_at: datetime.datetime
    updated_at: datetime.datetime | None = None


class ShuttlePage(BaseModel):
    data: list[ShuttleRecord]
    meta: PageMeta
