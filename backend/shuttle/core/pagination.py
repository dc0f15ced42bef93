"""Page/limit handling shared by the paginated listings."""

import math

from shuttle.config import settings
from shuttle.core.errors import InvalidPage, ValidationError
from shuttle.schemas.route import PageMeta


def check_paging(
    page: int,
    limit: int | None,
    sort_by: str,
    sort_fields: dict,
    direction: str,
) -> int:
    """Validate listing arguments and return the effective page size."""
    limit = limit or settings.default_page_size
    if page < 1:
        raise ValidationError("Invalid page number")
    if limit < 1 or limit > settings.max_page_size:
        raise ValidationError("Invalid limit number")
    if sort_by not in sort_fields:
        raise ValidationError(f"Invalid sort field {sort_by!r}")
    if direction not in ("asc", "desc"):
        raise ValidationError("Invalid sort direction, use 'asc' or 'desc'")
    return limit


def page_meta(page: int, limit: int, total: int, shown: int) -> PageMeta:
    """Pagination meta for a page holding ``shown`` of ``total`` items.

    A page past the end is an error unless there is nothing to show at all.
    """
    total_pages = math.ceil(total / limit)
    if page > total_pages:
        if total > 0:
            raise InvalidPage()
        page = 1

    start = (page - 1) * limit + 1 if shown else 0
    end = start + shown - 1 if shown else 0
    return PageMeta(
        current_page=page,
        total_pages=total_pages,
        per_page_items=limit,
        total_items=total,
        showing=f"Showing {start}-{end} of {total}",
    )
