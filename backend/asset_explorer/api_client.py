"""
Portal API client and the hierarchy loader built on it.

PortalApiClient is a blocking requests client with tenacity retries for
transient failures. ApiHierarchyLoader adapts it to the async
HierarchyLoader interface by running each call in a worker thread.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import requests
from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from .data_models import AssetRecord, FilterSpec, PaginationLinks, PaginationMeta
from .errors import ApiError, HierarchyPathNotFound
from .hierarchy_explorer import HierarchyLoader
from .hierarchy_models import AssetNode, EventNode, Page, ProcedureNode, SiteNode, SubjectNode
from .query_executor import QueryResult

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True
    return isinstance(error, ApiError) and error.is_transient


def _clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {key: value for key, value in (params or {}).items() if value is not None and value != ""}


class PortalApiClient:
    """
    JSON client for the asset portal API.

    Args:
        base_url: Server root, e.g. http://localhost:8000.
        get_auth_token: Optional callable returning a bearer token (or None).
        timeout: Per-request timeout in seconds.
        session: Optional requests.Session to reuse.
        max_attempts: Attempts per request, including the first.
        base_delay: Exponential backoff multiplier in seconds.
        max_delay: Upper bound for a single backoff wait.
    """

    def __init__(
        self,
        base_url: str,
        get_auth_token: Optional[Callable[[], Optional[str]]] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.get_auth_token = get_auth_token
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.get_auth_token:
            token = self.get_auth_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    # =========================================================================
    # Transport
    # =========================================================================

    def _send(self, method: str, endpoint: str, params: Optional[Dict[str, Any]], body: Any) -> Any:
        response = self._session.request(
            method,
            f"{self.base_url}{endpoint}",
            params=_clean_params(params),
            json=body,
            headers=self._get_headers(),
            timeout=self.timeout,
        )
        if not response.ok:
            try:
                data = response.json()
            except ValueError:
                data = {}
            if not isinstance(data, dict):
                data = {}
            message = data.get("error") or data.get("message") or response.reason or "Request failed"
            raise ApiError(response.status_code, str(message), data)
        return response.json()

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
    ) -> Any:
        """
        Send one request, retrying connection errors, timeouts, 429 and 5xx.

        Raises:
            ApiError: Non-2xx response, or status 0 when the server could not
                be reached after all attempts.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(self._send, method, endpoint, params, body)
        except requests.RequestException as e:
            logger.error(f"{method} {endpoint} failed: {e}")
            raise ApiError(0, str(e)) from e

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", endpoint, params=params)

    def post(self, endpoint: str, body: Any = None) -> Any:
        return self.request("POST", endpoint, body=body)

    # =========================================================================
    # Hierarchy
    # =========================================================================

    @staticmethod
    def _page(payload: Dict[str, Any], node_type) -> Page:
        meta = payload.get("meta")
        return Page(
            data=[node_type.from_dict(item) for item in payload.get("data") or []],
            meta=PaginationMeta.from_dict(meta) if meta else None,
        )

    def list_sites(self, page: int = 1, limit: int = 50, **filters: Any) -> Page[SiteNode]:
        """Sites; filters: trial_id, country_code, search, sort, order."""
        payload = self.get(f"{API_PREFIX}/sites", {"page": page, "limit": limit, **filters})
        return self._page(payload, SiteNode)

    def list_subjects(self, site_id: Any, page: int = 1, limit: int = 50, **sorting: Any) -> Page[SubjectNode]:
        payload = self.get(
            f"{API_PREFIX}/sites/{site_id}/subjects",
            {"page": page, "limit": limit, **sorting},
        )
        return self._page(payload, SubjectNode)

    def list_events(
        self, site_id: Any, subject_id: Any, page: int = 1, limit: int = 50, **sorting: Any
    ) -> Page[EventNode]:
        payload = self.get(
            f"{API_PREFIX}/sites/{site_id}/subjects/{subject_id}/events",
            {"page": page, "limit": limit, **sorting},
        )
        return self._page(payload, EventNode)

    def list_procedures(
        self, site_id: Any, subject_id: Any, event_id: Any, page: int = 1, limit: int = 50, **sorting: Any
    ) -> Page[ProcedureNode]:
        payload = self.get(
            f"{API_PREFIX}/sites/{site_id}/subjects/{subject_id}/events/{event_id}/procedures",
            {"page": page, "limit": limit, **sorting},
        )
        return self._page(payload, ProcedureNode)

    def list_assets(
        self,
        site_id: Any,
        subject_id: Any,
        event_id: Any,
        procedure_id: Any,
        page: int = 1,
        limit: int = 50,
        **sorting: Any,
    ) -> Page[AssetNode]:
        payload = self.get(
            f"{API_PREFIX}/sites/{site_id}/subjects/{subject_id}/events/{event_id}"
            f"/procedures/{procedure_id}/assets",
            {"page": page, "limit": limit, **sorting},
        )
        return self._page(payload, AssetNode)

    # =========================================================================
    # Assets
    # =========================================================================

    def get_asset(self, asset_id: Any) -> Dict[str, Any]:
        return self.get(f"{API_PREFIX}/assets/{asset_id}")["data"]

    def query_assets(self, spec: FilterSpec) -> QueryResult:
        """One page of the flat asset view for spec."""
        payload = self.post(f"{API_PREFIX}/assets/query", spec.to_dict())
        return QueryResult(
            records=[AssetRecord.from_dict(item) for item in payload.get("data") or []],
            meta=PaginationMeta.from_dict(payload["meta"]),
            links=PaginationLinks.from_dict(payload.get("links") or {}),
        )

    def query_all_assets(self, spec: FilterSpec, page_size: int = 1000) -> List[AssetRecord]:
        """Every record matching spec, walking pages from the first."""
        records: List[AssetRecord] = []
        page = 1
        while True:
            result = self.query_assets(replace(spec, page=page, limit=page_size))
            records.extend(result.records)
            logger.debug(f"Fetched page {page}/{result.meta.total_pages} ({len(records)}/{result.meta.total})")
            if not result.records or page >= result.meta.total_pages:
                break
            page += 1
        return records


class ApiHierarchyLoader(HierarchyLoader):
    """HierarchyLoader over PortalApiClient; 404 becomes HierarchyPathNotFound."""

    def __init__(self, client: PortalApiClient):
        self.client = client

    async def _call(self, level: str, method: Callable[..., Page], *args: Any, **kwargs: Any) -> Page:
        try:
            return await asyncio.to_thread(method, *args, **kwargs)
        except ApiError as e:
            if e.status == 404:
                raise HierarchyPathNotFound(e.message, level=level) from e
            raise

    async def list_subjects(self, site_id, page, limit):
        return await self._call("subjects", self.client.list_subjects, site_id, page=page, limit=limit)

    async def list_events(self, site_id, subject_id, page, limit):
        return await self._call("events", self.client.list_events, site_id, subject_id, page=page, limit=limit)

    async def list_procedures(self, site_id, subject_id, event_id, page, limit):
        return await self._call(
            "procedures", self.client.list_procedures, site_id, subject_id, event_id, page=page, limit=limit
        )

    async def list_assets(self, site_id, subject_id, event_id, procedure_id, page, limit):
        return await self._call(
            "assets", self.client.list_assets, site_id, subject_id, event_id, procedure_id, page=page, limit=limit
        )
