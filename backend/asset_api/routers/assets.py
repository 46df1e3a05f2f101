"""
Assets router: the filtered flat view and single-asset detail.

Endpoints:
- POST /assets/query - Filter, sort and paginate assets
- GET /assets/{asset_id} - Asset detail with comments
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from asset_api.db import get_db
from asset_api.services.asset_store import SqlAssetStore
from asset_explorer.data_models import FilterSpec
from asset_explorer.errors import FilterValidationError, QueryExecutionError
from asset_explorer.filter_compiler import compile_filters
from asset_explorer.formatting import format_datetime, full_name
from asset_explorer.query_executor import QueryExecutor, normalize_asset_row

logger = logging.getLogger(__name__)

router = APIRouter()


class ErrorResponse(BaseModel):
    """Body of every failed request."""
    success: bool = False
    error: str


@router.post(
    "/assets/query",
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def query_assets(
    body: Optional[Dict[str, Any]] = Body(default=None),
    db: Session = Depends(get_db),
):
    """
    Flat asset view.

    The body is a FilterSpec in camelCase JSON. Validation problems answer
    400 before the database is touched; store failures answer 500.
    """
    try:
        query = compile_filters(FilterSpec.from_dict(body))
    except FilterValidationError as e:
        logger.info(f"Rejected asset query ({e.field}): {e.message}")
        raise HTTPException(status_code=400, detail=e.message)

    try:
        result = QueryExecutor().execute(query, SqlAssetStore(db))
    except QueryExecutionError as e:
        logger.error(f"Asset query failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to query assets")
    return result.to_response()


@router.get("/assets/{asset_id}", responses={404: {"model": ErrorResponse}})
def get_asset(asset_id: int, db: Session = Depends(get_db)):
    """Single live asset as an AssetRecord plus its comment thread."""
    store = SqlAssetStore(db)
    row = store.fetch_asset(asset_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Asset not found")

    data = normalize_asset_row(row).to_dict()
    data["commentList"] = [
        {
            "id": comment["id"],
            "comment": comment["comment"],
            "createdAt": format_datetime(comment["created_at"]),
            "author": {
                "name": full_name(comment["first_name"], comment["last_name"]),
                "email": comment["email"],
            },
        }
        for comment in store.fetch_comments(asset_id)
    ]
    return {"success": True, "data": data}
