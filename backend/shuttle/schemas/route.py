import datetime
import uuid
from typing import Annotated

from pydantic import BeforeValidator, BaseModel, ConfigDict, Field


def _order_to_int(value):
    # Orders arrive as text from older clients; blank means "not given".
    if value is None or value == "":
        return 0
    if isinstance(value, str):
        return int(value.strip())
    return value


OrderValue = Annotated[int, BeforeValidator(_order_to_int)]


# ---- requests ----

class StudentOrderIn(BaseModel):
    student_uuid: uuid.UUID
    student_order: OrderValue = 0


class DriverAssignmentIn(BaseModel):
    driver_uuid: uuid.UUID
    students: list[StudentOrderIn] = []


class RouteCreate(BaseModel):
    route_name: str = Field(min_length=1)
    route_description: str = ""
    route_assignment: list[DriverAssignmentIn] = []


class RouteUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    driver_uuid: uuid.UUID
    route_name: str = Field(min_length=1)
    route_description: str = ""
    added: list[StudentOrderIn] = []
    deleted_students: list[StudentOrderIn] = Field(default=[], alias="deletedStudents")
    students: list[StudentOrderIn] = []


class StudentOrderUpdate(BaseModel):
    new_order: int


# ---- responses ----

class StudentOnRoute(BaseModel):
    route_assignment_uuid: uuid.UUID
    student_uuid: uuid.UUID
    student_first_name: str
    student_last_name: str
    student_status: str
    student_order: int
    pickup_lat: float | None = None
    pickup_lon: float | None = None


class DriverAssignmentOut(BaseModel):
    driver_uuid: uuid.UUID
    driver_first_name: str
    driver_last_name: str
    students: list[StudentOnRoute] = []


class RouteInfo(BaseModel):
    route_uuid: uuid.UUID
    route_name: str
    route_description: str
    created_at: datetime.datetime | None = None
    created_by: str | None = None
    updated_at: datetime.datetime | None = None
    updated_by: str | None = None


class RouteDetail(RouteInfo):
    route_assignment: list[DriverAssignmentOut] = []


class PageMeta(BaseModel):
    current_page: int
    total_pages: int
    per_page_items: int
    total_items: int
    showing: str


class RoutePage(BaseModel):
    data: list[RouteInfo]
    meta: PageMeta


class RouteDetailPage(BaseModel):
    data: list[RouteDetail]
    meta: PageMeta


class DriverStop(BaseModel):
    route_assignment_uuid: uuid.UUID
    route_uuid: uuid.UUID
    student_uuid: uuid.UUID
    student_first_name: str
    student_last_name: str
    student_status: str
    student_order: int
    student_address: str = ""
    pickup_lat: float | None = None
    pickup_lon: float | None = None
    shuttle_uuid: uuid.UUID | None = None
    shuttle_status: str | None = None
    school_name: str
    school_lat: float
    school_lon: float


class RouteDistance(BaseModel):
    driver_uuid: uuid.UUID
    stops: int
    total_distance_km: float
