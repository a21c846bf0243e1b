"""Page/limit helpers shared by list endpoints."""

import math


def page_meta(page: int, limit: int, total_count: int) -> dict:
    """Build the pagination block returned next to list results."""

    total_pages = math.ceil(total_count / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "totalCount": total_count,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit
