import math
from typing import Sequence

from marketplace.models import Listing, Page


def paginate(listings: Sequence[Listing], page_size: int, page: int) -> Page:
    """Return the 1-based ``page`` of ``listings``.

    Input order is used as-is. Sort the snapshot first (e.g. by ``created_at``)
    if the browsing order has to be stable between calls.
    """
    if page_size < 1:
        raise ValueError(f"page_size must be at least 1, got {page_size}")
    if page < 1:
        raise ValueError(f"page must be at least 1, got {page}")

    total = len(listings)
    start = (page - 1) * page_size
    end = start + page_size

    return Page(
        items=list(listings[start:end]),
        page=page,
        page_size=page_size,
        total=total,
        total_pages=math.ceil(total / page_size),
        has_next=end < total,
        has_previous=page > 1,
    )
