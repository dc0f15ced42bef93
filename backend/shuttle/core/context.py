"""Per-request acting user and school, passed explicitly into the core."""

import uuid
from dataclasses import dataclass

from shuttle.core.errors import ValidationError


@dataclass(frozen=True)
class RequestContext:
    user_uuid: uuid.UUID | None = None
    user_name: str = ""
    school_uuid: uuid.UUID | None = None


def require_school(ctx: RequestContext) -> uuid.UUID:
    if ctx.school_uuid is None:
        raise ValidationError("Request is not bound to a school")
    return ctx.school_uuid
