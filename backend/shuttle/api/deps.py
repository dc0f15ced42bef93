"""Request-scoped dependencies shared by the routers."""

import uuid

from fastapi import Header

from shuttle.core.context import RequestContext


def request_context(
    x_user_uuid: uuid.UUID | None = Header(default=None),
    x_user_name: str = Header(default=""),
    x_school_uuid: uuid.UUID | None = Header(default=None),
) -> RequestContext:
    """Acting user and school, as forwarded by the auth gateway."""
    return RequestContext(
        user_uuid=x_user_uuid,
        user_name=x_user_name,
        school_uuid=x_school_uuid,
    )


def envelope(message: str, data=None) -> dict:
    return {"message": message, "data": data}
