"""Domain error kinds raised by the route core.

The HTTP layer maps each kind to a status code; see ``shuttle.main``.
"""


class ShuttleError(Exception):
    """Base class for all domain errors."""

    message = "Shuttle error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


# ---- validation ----

class ValidationError(ShuttleError):
    message = "Invalid request"


class InvalidStudentOrder(ValidationError):
    message = "Student order must be a positive, non-repeated number"


class InvalidCoordinate(ValidationError):
    message = "Coordinate out of range"


class InvalidPage(ValidationError):
    message = "Page number out of range"


# ---- conflicts ----

class ConflictError(ShuttleError):
    message = "Conflict"


class DriverAlreadyAssigned(ConflictError):
    message = "Driver already assigned to another route"


class StudentAlreadyAssigned(ConflictError):
    message = "Student already assigned to another route"


class DuplicateStudentInRequest(ConflictError):
    message = "Same student not permitted"


class DuplicateDriverInRequest(ConflictError):
    message = "Same driver not permitted"


# ---- capacity ----

class CapacityExceeded(ShuttleError):
    def __init__(self, seat_count: int) -> None:
        self.seat_count = seat_count
        super().__init__(f"Maximum seats exceeded, capacity is {seat_count}")


# ---- not found ----

class NotFoundError(ShuttleError):
    message = "Not found"


class RouteNotFound(NotFoundError):
    message = "Route not found"


class StudentNotFound(NotFoundError):
    message = "Student not found"


class DriverNotFound(NotFoundError):
    message = "Driver not found"


class ShuttleNotFound(NotFoundError):
    message = "Shuttle data not found"


class VehicleNotFound(NotFoundError):
    def __init__(self, driver_uuid: object) -> None:
        self.driver_uuid = driver_uuid
        super().__init__(f"Vehicle for driver {driver_uuid} not found")


# ---- storage ----

class StorageError(ShuttleError):
    message = "Internal storage error"
