"""
Sites router: the root of the hierarchy and the nested listings below it.

Endpoints:
- GET /sites - Sites
- GET /sites/{site_id}/subjects - Subjects at a site
- GET /sites/{site_id}/subjects/{subject_id}/events - Events of a subject
- GET /sites/{site_id}/subjects/{subject_id}/events/{event_id}/procedures - Procedures of an event
- GET /sites/{site_id}/subjects/{subject_id}/events/{event_id}/procedures/{procedure_id}/assets - Assets of a procedure
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from asset_api.config import settings
from asset_api.db import get_db
from asset_api.routers.assets import ErrorResponse
from asset_api.services.hierarchy_service import (
    ASSET_SORT_COLUMNS,
    ASSET_SORT_DEFAULT,
    EVENT_SORT_COLUMNS,
    EVENT_SORT_DEFAULT,
    PROCEDURE_SORT_COLUMNS,
    PROCEDURE_SORT_DEFAULT,
    SITE_SORT_COLUMNS,
    SITE_SORT_DEFAULT,
    SUBJECT_SORT_COLUMNS,
    SUBJECT_SORT_DEFAULT,
    HierarchyService,
)
from asset_explorer.errors import HierarchyPathNotFound
from asset_explorer.pagination import build_pagination, get_pagination_params, get_sort_params

logger = logging.getLogger(__name__)

router = APIRouter()

NOT_FOUND = {404: {"model": ErrorResponse}}


class Listing:
    """Resolved page window and sort for one request."""

    def __init__(self, page: Optional[int], limit: Optional[int], sort: Optional[str], order: Optional[str],
                 allowed: Sequence[str], default: Tuple[str, str]):
        self.page, self.limit, self.offset = get_pagination_params(
            page,
            limit,
            default_limit=settings.hierarchy_default_limit,
            max_limit=settings.hierarchy_max_limit,
        )
        self.sort, self.order = get_sort_params(sort, order, allowed, default[0], default[1])

    def respond(self, nodes: List[Any], total: int, base_url: str, **query_params: Any) -> Dict[str, Any]:
        pagination = build_pagination(
            self.page,
            self.limit,
            total,
            base_url,
            {"sort": self.sort, "order": self.order, **query_params},
        )
        return {
            "success": True,
            "data": [node.to_dict() for node in nodes],
            **pagination.to_dict(),
        }


def _not_found(e: HierarchyPathNotFound) -> HTTPException:
    logger.info(f"Hierarchy path rejected at {e.level}: {e.message}")
    return HTTPException(status_code=404, detail=e.message)


@router.get("/sites")
def list_sites(
    trial_id: Optional[int] = None,
    country_code: Optional[str] = None,
    search: Optional[str] = None,
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    sort: Optional[str] = None,
    order: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Sites, optionally narrowed by trial, country code or name search."""
    listing = Listing(page, limit, sort, order, list(SITE_SORT_COLUMNS), SITE_SORT_DEFAULT)
    nodes, total = HierarchyService(db).list_sites(
        listing.limit, listing.offset, listing.sort, listing.order,
        trial_id=trial_id, country_code=country_code, search=search,
    )
    return listing.respond(
        nodes, total, "/api/v1/sites",
        trial_id=trial_id, country_code=country_code, search=search,
    )


@router.get("/sites/{site_id}/subjects", responses=NOT_FOUND)
def list_site_subjects(
    site_id: int,
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    sort: Optional[str] = None,
    order: Optional[str] = None,
    db: Session = Depends(get_db),
):
    listing = Listing(page, limit, sort, order, list(SUBJECT_SORT_COLUMNS), SUBJECT_SORT_DEFAULT)
    try:
        nodes, total = HierarchyService(db).list_subjects(
            site_id, listing.limit, listing.offset, listing.sort, listing.order
        )
    except HierarchyPathNotFound as e:
        raise _not_found(e)
    return listing.respond(nodes, total, f"/api/v1/sites/{site_id}/subjects")


@router.get("/sites/{site_id}/subjects/{subject_id}/events", responses=NOT_FOUND)
def list_subject_events(
    site_id: int,
    subject_id: int,
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    sort: Optional[str] = None,
    order: Optional[str] = None,
    db: Session = Depends(get_db),
):
    listing = Listing(page, limit, sort, order, list(EVENT_SORT_COLUMNS), EVENT_SORT_DEFAULT)
    try:
        nodes, total = HierarchyService(db).list_events(
            site_id, subject_id, listing.limit, listing.offset, listing.sort, listing.order
        )
    except HierarchyPathNotFound as e:
        raise _not_found(e)
    return listing.respond(nodes, total, f"/api/v1/sites/{site_id}/subjects/{subject_id}/events")


@router.get("/sites/{site_id}/subjects/{subject_id}/events/{event_id}/procedures", responses=NOT_FOUND)
def list_event_procedures(
    site_id: int,
    subject_id: int,
    event_id: int,
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    sort: Optional[str] = None,
    order: Optional[str] = None,
    db: Session = Depends(get_db),
):
    listing = Listing(page, limit, sort, order, list(PROCEDURE_SORT_COLUMNS), PROCEDURE_SORT_DEFAULT)
    try:
        nodes, total = HierarchyService(db).list_procedures(
            site_id, subject_id, event_id, listing.limit, listing.offset, listing.sort, listing.order
        )
    except HierarchyPathNotFound as e:
        raise _not_found(e)
    return listing.respond(
        nodes, total, f"/api/v1/sites/{site_id}/subjects/{subject_id}/events/{event_id}/procedures"
    )


@router.get(
    "/sites/{site_id}/subjects/{subject_id}/events/{event_id}/procedures/{procedure_id}/assets",
    responses=NOT_FOUND,
)
def list_procedure_assets(
    site_id: int,
    subject_id: int,
    event_id: int,
    procedure_id: int,
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    sort: Optional[str] = None,
    order: Optional[str] = None,
    db: Session = Depends(get_db),
):
    listing = Listing(page, limit, sort, order, list(ASSET_SORT_COLUMNS), ASSET_SORT_DEFAULT)
    try:
        nodes, total = HierarchyService(db).list_assets(
            site_id, subject_id, event_id, procedure_id,
            listing.limit, listing.offset, listing.sort, listing.order,
        )
    except HierarchyPathNotFound as e:
        raise _not_found(e)
    return listing.respond(
        nodes, total,
        f"/api/v1/sites/{site_id}/subjects/{subject_id}/events/{event_id}/procedures/{procedure_id}/assets",
    )
