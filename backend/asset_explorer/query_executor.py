"""
Query Executor

Runs a CompiledQuery against a storage port: count, then one page, then
row normalization and the pagination envelope.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .country_codes import get_country_name
from .data_models import AssetRecord, CompiledQuery, PaginationLinks, PaginationMeta, SortSpec, WhereClause
from .errors import QueryExecutionError
from .formatting import format_date, format_datetime, format_file_size, full_name, media_duration
from .pagination import build_pagination

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "/api/v1/assets/query"


class StoragePort(ABC):
    """Backing store for the flat asset view."""

    @abstractmethod
    def count(self, where: WhereClause) -> int:
        """Number of distinct assets matching where."""

    @abstractmethod
    def fetch_page(self, where: WhereClause, sort: SortSpec, limit: int, offset: int) -> List[Mapping[str, Any]]:
        """Raw asset rows for one page."""


def normalize_asset_row(row: Mapping[str, Any]) -> AssetRecord:
    """
    Flatten one raw asset row into an AssetRecord.

    A container is a site when its type is 'Site', otherwise a library.
    Missing associations become "", False or 0.
    """
    container_id = row.get("container_id")
    is_site = bool(container_id) and row.get("container_type") == "Site"
    is_library = bool(container_id) and not is_site
    country_code = row.get("country_code") or ""
    filesize = int(row.get("filesize") or 0)

    return AssetRecord(
        asset_id=row.get("id") or 0,
        asset_title=row.get("filename") or "",
        trial_id=row.get("trial_id") or 0,
        trial_name=row.get("trial_name") or row.get("company_name") or "",
        site_id=container_id if is_site else 0,
        site_name=(row.get("container_name") or "") if is_site else "",
        site_country=get_country_name(country_code) if is_site and country_code else "",
        site_country_code=country_code if is_site else "",
        library_id=container_id if is_library else 0,
        library_name=(row.get("container_name") or "") if is_library else "",
        subject_number=row.get("subject_number") or "",
        study_arm=row.get("study_arm") or "",
        study_event=row.get("study_event") or "",
        study_procedure=row.get("study_procedure") or "",
        study_procedure_date=format_date(row.get("study_procedure_date")) or "",
        upload_date=format_datetime(row.get("created_at")) or "",
        uploaded_by=(
            full_name(row.get("uploader_first_name"), row.get("uploader_last_name"))
            or row.get("uploader_email")
            or ""
        ),
        asset_duration=media_duration(row.get("media_info")) or "",
        file_size=filesize,
        file_size_formatted=format_file_size(filesize) or "",
        processed=bool(row.get("processed")),
        reviewed=bool(row.get("reviewed")),
        reviewed_by=full_name(row.get("reviewer_first_name"), row.get("reviewer_last_name")) or "",
        reviewed_date=format_date(row.get("review_date")) or "",
        evaluator=full_name(row.get("evaluator_first_name"), row.get("evaluator_last_name")) or "",
        comments=row.get("comments") or "",
        asset_link=row.get("s3_url") or "",
    )


@dataclass
class QueryResult:
    """One page of the flat asset view."""
    records: List[AssetRecord]
    meta: PaginationMeta
    links: PaginationLinks

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "data": [record.to_dict() for record in self.records],
            "meta": self.meta.to_dict(),
            "links": self.links.to_dict(),
        }


class QueryExecutor:
    """
    Executes compiled queries.

    Count and page fetch receive the same WhereClause object, so the total
    always describes the page it is reported with.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL):
        self.base_url = base_url

    def execute(
        self,
        query: CompiledQuery,
        store: StoragePort,
        query_params: Optional[Dict[str, Any]] = None,
    ) -> QueryResult:
        """
        Count, fetch and normalize one page.

        Args:
            query: Output of compile_filters.
            store: Backing store.
            query_params: Extra parameters echoed into pagination links.

        Raises:
            QueryExecutionError: If the store fails; no partial page is returned.
        """
        where = query.where
        try:
            total = int(store.count(where))
            rows = store.fetch_page(where, query.sort, query.limit, query.offset)
        except QueryExecutionError:
            raise
        except Exception as e:
            logger.error(f"Asset query failed: {e}")
            raise QueryExecutionError(f"Asset query failed: {e}") from e

        records = [normalize_asset_row(row) for row in rows]
        envelope = build_pagination(query.page, query.limit, total, self.base_url, query_params)
        logger.info(
            f"Asset query returned {len(records)} of {total} records "
            f"(page {query.page}/{envelope.meta.total_pages})"
        )
        return QueryResult(records=records, meta=envelope.meta, links=envelope.links)
