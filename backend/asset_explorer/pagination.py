"""
Pagination and sort-parameter helpers shared by every listing endpoint.
"""

import math
from typing import Any, Dict, Optional, Sequence, Tuple
from urllib.parse import urlencode

from .data_models import PaginationEnvelope, PaginationLinks, PaginationMeta

DEFAULT_LIMIT = 50
MAX_LIMIT = 500


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_pagination_params(
    page: Any = None,
    limit: Any = None,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> Tuple[int, int, int]:
    """
    Clamp raw page/limit values.

    Returns:
        Tuple of (page, limit, offset).
    """
    page = max(1, _to_int(page, 1))
    limit = min(max_limit, max(1, _to_int(limit, default_limit) or default_limit))
    return page, limit, (page - 1) * limit


def get_sort_params(
    sort: Optional[str],
    order: Optional[str],
    allowed_fields: Sequence[str],
    default_sort: str = "id",
    default_order: str = "desc",
) -> Tuple[str, str]:
    """Resolve sort field and order against an allow-list."""
    resolved_sort = sort if sort in allowed_fields else default_sort
    normalized = (order or "").lower()
    resolved_order = normalized if normalized in ("asc", "desc") else default_order
    return resolved_sort, resolved_order


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


def build_pagination(
    page: int,
    limit: int,
    total: int,
    base_url: str,
    query_params: Optional[Dict[str, Any]] = None,
) -> PaginationEnvelope:
    """
    Build the meta/links envelope for one page of a listing.

    prev is None on the first page, next is None on the last one, and last
    is None when there are no pages at all.
    """
    pages = total_pages(total, limit)
    extra = {
        key: value
        for key, value in (query_params or {}).items()
        if key not in ("page", "limit") and value is not None and value != ""
    }

    def build_url(target_page: int) -> str:
        params = {**extra, "page": target_page, "limit": limit}
        return f"{base_url}?{urlencode(params, doseq=True)}"

    return PaginationEnvelope(
        meta=PaginationMeta(page=page, limit=limit, total=total, total_pages=pages),
        links=PaginationLinks(
            current=build_url(page),
            first=build_url(1),
            last=build_url(pages) if pages > 0 else None,
            prev=build_url(page - 1) if page > 1 else None,
            next=build_url(page + 1) if page < pages else None,
        ),
    )
