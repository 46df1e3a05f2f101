"""
Unit tests for PortalApiClient and ApiHierarchyLoader.

Tests:
- Request construction (URL, params, auth header)
- Error responses map to ApiError
- Retry on transient failures only
- Page parsing into node dataclasses
- Walking every page of the flat asset view
- 404 from a hierarchy listing -> HierarchyPathNotFound

Run with: python -m pytest asset_explorer/tests/test_api_client.py -v
"""

from unittest.mock import MagicMock

import pytest
import requests

from asset_explorer.api_client import ApiHierarchyLoader, PortalApiClient
from asset_explorer.data_models import FilterSpec
from asset_explorer.errors import ApiError, HierarchyPathNotFound
from asset_explorer.hierarchy_models import Page, SubjectNode


# =============================================================================
# Test Fixtures
# =============================================================================

def make_response(status_code=200, payload=None, reason="OK"):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = reason
    response.json.return_value = payload if payload is not None else {}
    return response


def meta(page=1, total_pages=1, limit=50, total=1):
    return {"page": page, "limit": limit, "total": total, "totalPages": total_pages}


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session):
    return PortalApiClient(
        "http://portal.test/",
        get_auth_token=lambda: "tok-123",
        session=session,
        max_attempts=3,
        base_delay=0,
        max_delay=0,
    )


# =============================================================================
# Test Transport
# =============================================================================

class TestTransport:
    """Request construction and error mapping."""

    def test_get_sends_auth_and_drops_empty_params(self, client, session):
        session.request.return_value = make_response(payload={"success": True})

        client.get("/api/v1/sites", {"page": 1, "search": "", "country_code": None})

        args, kwargs = session.request.call_args
        assert args == ("GET", "http://portal.test/api/v1/sites")
        assert kwargs["params"] == {"page": 1}
        assert kwargs["headers"]["Authorization"] == "Bearer tok-123"
        assert kwargs["timeout"] == 30

    def test_no_token_no_auth_header(self, session):
        session.request.return_value = make_response(payload={})
        client = PortalApiClient("http://portal.test", get_auth_token=lambda: None, session=session)

        client.get("/health")

        assert "Authorization" not in session.request.call_args.kwargs["headers"]

    def test_error_message_from_body(self, client, session):
        session.request.return_value = make_response(
            404, {"success": False, "error": "Site not found"}, reason="Not Found"
        )

        with pytest.raises(ApiError) as exc_info:
            client.get("/api/v1/sites/9/subjects")

        assert exc_info.value.status == 404
        assert exc_info.value.message == "Site not found"
        assert str(exc_info.value) == "API error 404: Site not found"

    def test_error_without_json_body_uses_reason(self, client, session):
        response = make_response(400, reason="Bad Request")
        response.json.side_effect = ValueError("no json")
        session.request.return_value = response

        with pytest.raises(ApiError) as exc_info:
            client.post("/api/v1/assets/query", {})

        assert exc_info.value.message == "Bad Request"

    def test_client_errors_are_not_retried(self, client, session):
        session.request.return_value = make_response(400, {"error": "bad filter"})

        with pytest.raises(ApiError):
            client.get("/api/v1/assets/1")

        assert session.request.call_count == 1


class TestRetry:
    """Transient failures are retried."""

    def test_server_error_then_success(self, client, session):
        session.request.side_effect = [
            make_response(503, {"error": "unavailable"}),
            make_response(payload={"success": True, "data": {"assetId": 1}}),
        ]

        assert client.get_asset(1) == {"assetId": 1}
        assert session.request.call_count == 2

    def test_rate_limit_is_retried(self, client, session):
        session.request.side_effect = [
            make_response(429, {"error": "slow down"}),
            make_response(payload={"data": {}}),
        ]

        client.get_asset(1)

        assert session.request.call_count == 2

    def test_gives_up_after_max_attempts(self, client, session):
        session.request.return_value = make_response(502, {"error": "bad gateway"})

        with pytest.raises(ApiError) as exc_info:
            client.get("/api/v1/sites")

        assert exc_info.value.status == 502
        assert session.request.call_count == 3

    def test_connection_error_becomes_status_zero(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ApiError) as exc_info:
            client.get("/api/v1/sites")

        assert exc_info.value.status == 0
        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)
        assert session.request.call_count == 3


# =============================================================================
# Test Listings
# =============================================================================

class TestListings:
    """Typed hierarchy pages and the flat asset view."""

    def test_list_subjects(self, client, session):
        session.request.return_value = make_response(payload={
            "success": True,
            "data": [{"id": 7, "number": "0007", "armName": "Placebo", "eventCount": 4}],
            "meta": meta(page=1, total_pages=2, total=60),
        })

        page = client.list_subjects(42, page=1, limit=50, sort="number", order="asc")

        args, kwargs = session.request.call_args
        assert args[1] == "http://portal.test/api/v1/sites/42/subjects"
        assert kwargs["params"] == {"page": 1, "limit": 50, "sort": "number", "order": "asc"}
        assert page.data == [SubjectNode(id=7, number="0007", arm_name="Placebo", event_count=4)]
        assert page.meta.total == 60
        assert page.has_next is True

    def test_list_assets_url(self, client, session):
        session.request.return_value = make_response(payload={"data": [], "meta": meta(total=0, total_pages=0)})

        page = client.list_assets(1, 2, 3, 4)

        assert session.request.call_args.args[1] == (
            "http://portal.test/api/v1/sites/1/subjects/2/events/3/procedures/4/assets"
        )
        assert page.data == []
        assert page.has_next is False

    def test_query_assets(self, client, session):
        session.request.return_value = make_response(payload={
            "success": True,
            "data": [{"assetId": 5, "assetTitle": "clip.mp4", "siteCountry": "Germany"}],
            "meta": meta(limit=1000),
            "links": {"self": "/api/v1/assets/query?page=1&limit=1000", "first": "/x", "last": "/x",
                      "prev": None, "next": None},
        })

        result = client.query_assets(FilterSpec(trials=["Trial A"]))

        body = session.request.call_args.kwargs["json"]
        assert body["trials"] == ["Trial A"]
        assert body["sortBy"] == "uploadDate"
        assert result.records[0].asset_id == 5
        assert result.records[0].site_country == "Germany"
        assert result.records[0].reviewed_by == ""
        assert result.links.current == "/api/v1/assets/query?page=1&limit=1000"

    def test_query_all_assets_walks_pages(self, client, session):
        session.request.side_effect = [
            make_response(payload={"data": [{"assetId": 1}, {"assetId": 2}], "meta": meta(1, 2, 2, 3)}),
            make_response(payload={"data": [{"assetId": 3}], "meta": meta(2, 2, 2, 3)}),
        ]

        records = client.query_all_assets(FilterSpec(search_term="gait"), page_size=2)

        bodies = [call.kwargs["json"] for call in session.request.call_args_list]
        assert [record.asset_id for record in records] == [1, 2, 3]
        assert [(body["page"], body["limit"]) for body in bodies] == [(1, 2), (2, 2)]
        assert all(body["searchTerm"] == "gait" for body in bodies)


# =============================================================================
# Test Hierarchy Loader
# =============================================================================

class TestApiHierarchyLoader:
    """Async adapter over the blocking client."""

    @pytest.mark.asyncio
    async def test_delegates_to_client(self):
        client = MagicMock(spec=PortalApiClient)
        client.list_events.return_value = Page(data=[])
        loader = ApiHierarchyLoader(client)

        page = await loader.list_events(42, 7, 1, 100)

        client.list_events.assert_called_once_with(42, 7, page=1, limit=100)
        assert page.data == []

    @pytest.mark.asyncio
    async def test_not_found_becomes_path_error(self):
        client = MagicMock(spec=PortalApiClient)
        client.list_subjects.side_effect = ApiError(404, "Site not found")
        loader = ApiHierarchyLoader(client)

        with pytest.raises(HierarchyPathNotFound) as exc_info:
            await loader.list_subjects(99, 1, 100)

        assert exc_info.value.message == "Site not found"
        assert exc_info.value.level == "subjects"

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        client = MagicMock(spec=PortalApiClient)
        client.list_procedures.side_effect = ApiError(500, "boom")
        loader = ApiHierarchyLoader(client)

        with pytest.raises(ApiError):
            await loader.list_procedures(1, 2, 3, 1, 100)
