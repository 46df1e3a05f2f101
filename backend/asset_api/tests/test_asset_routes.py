"""
API tests for the asset endpoints against the seeded SQLite database.

Tests:
- POST /api/v1/assets/query filters, sort and pagination
- Whole-day end date, pending review, view modes
- Validation errors (400) and store failures (500)
- GET /api/v1/assets/{asset_id} detail and 404
- Several live reviews on one asset: one row, latest review wins
- Case-insensitive search on non-ASCII text

Run with: python -m pytest asset_api/tests/test_asset_routes.py -v
"""

from datetime import datetime
from unittest.mock import patch

import pytest

from asset_api.db import Asset, AssetReview
from asset_api.services.asset_store import SqlAssetStore

QUERY_URL = "/api/v1/assets/query"


def query(client, **body):
    response = client.post(QUERY_URL, json=body)
    assert response.status_code == 200, response.text
    return response.json()


def ids(payload):
    return [record["assetId"] for record in payload["data"]]


# =============================================================================
# Test Query Basics
# =============================================================================

class TestQueryBasics:
    """Unfiltered view, sort and pagination."""

    def test_default_view_excludes_soft_deleted(self, client):
        payload = query(client)

        assert payload["success"] is True
        assert ids(payload) == [1001, 1000, 1002, 1003, 1004, 1006]
        assert payload["meta"] == {"page": 1, "limit": 1000, "total": 6, "totalPages": 1}

    def test_trial_a_walkthrough(self, client):
        payload = query(client, trials=["Trial A"], sites=[], searchTerm="",
                        sortBy="uploadDate", sortOrder="desc", page=1, limit=1000)

        assert ids(payload) == [1001, 1000, 1002, 1004, 1006]
        assert payload["meta"]["total"] == 5

    def test_sort_by_filename(self, client):
        payload = query(client, sortBy="filename", sortOrder="asc")

        assert ids(payload)[0] == 1000
        assert ids(payload)[-1] == 1001

    def test_unknown_sort_field_sorts_by_upload_date(self, client):
        assert ids(query(client, sortBy="password")) == ids(query(client))

    def test_pagination(self, client):
        payload = query(client, page=2, limit=2)

        assert ids(payload) == [1002, 1003]
        assert payload["meta"] == {"page": 2, "limit": 2, "total": 6, "totalPages": 3}
        assert payload["links"]["prev"].endswith("page=1&limit=2")
        assert payload["links"]["next"].endswith("page=3&limit=2")

    def test_limit_is_clamped(self, client):
        assert query(client, limit=10000)["meta"]["limit"] == 5000

    def test_page_past_the_end_is_empty(self, client):
        payload = query(client, page=9, limit=5)

        assert payload["data"] == []
        assert payload["meta"]["total"] == 6

    def test_record_shape(self, client):
        record = query(client, searchTerm="baseline")["data"][0]

        assert record["assetId"] == 1000
        assert record["assetTitle"] == "baseline_gait.mp4"
        assert record["trialName"] == "Trial A"
        assert record["siteId"] == 10
        assert record["siteName"] == "Site Berlin"
        assert record["siteCountry"] == "Germany"
        assert record["libraryId"] == 0
        assert record["libraryName"] == ""
        assert record["subjectNumber"] == "001"
        assert record["studyArm"] == "Placebo"
        assert record["studyEvent"] == "Baseline"
        assert record["studyProcedure"] == "Gait"
        assert record["studyProcedureDate"] == "2024-03-01"
        assert record["uploadDate"] == "2024-03-10T23:59:59"
        assert record["uploadedBy"] == "Uma Uploader"
        assert record["evaluator"] == "Evan Evaluator"
        assert record["assetDuration"] == "1:15"
        assert record["fileSizeFormatted"] == "10.00 MB"
        assert record["processed"] is True
        assert record["reviewed"] is True
        assert record["reviewedBy"] == "Rita Reviewer"
        assert record["reviewedDate"] == "2024-03-12"
        assert record["comments"] == "Looks good | Check audio"

    def test_missing_associations_are_empty_not_null(self, client):
        record = next(r for r in query(client)["data"] if r["assetId"] == 1006)

        assert all(value is not None for value in record.values())
        assert record["siteId"] == 0
        assert record["libraryId"] == 0
        assert record["subjectNumber"] == ""
        assert record["comments"] == ""


# =============================================================================
# Test Filters
# =============================================================================

class TestFilters:
    """One dimension at a time against known data."""

    @pytest.mark.parametrize("body,expected", [
        ({"trials": ["Beta Pharma"]}, [1003]),
        ({"sites": ["Site Boston"]}, [1002]),
        ({"countries": ["Germany"]}, [1001, 1000]),
        ({"countries": ["japan"]}, [1003]),
        ({"studyArms": ["Placebo"]}, [1001, 1000]),
        ({"procedures": ["Gait"]}, [1001, 1000, 1002]),
        ({"reviewStatus": "reviewed"}, [1000]),
        ({"reviewStatus": "pending"}, [1001, 1002, 1003, 1004, 1006]),
        ({"processedStatus": "yes"}, [1000, 1003, 1004]),
        ({"processedStatus": "no"}, [1001, 1002, 1006]),
        ({"dataViewMode": "sites"}, [1001, 1000, 1002, 1003]),
        ({"dataViewMode": "library"}, [1004, 1006]),
        ({"dataViewMode": "library", "libraries": ["Library One"]}, [1004]),
        ({"libraries": ["Library One"]}, [1004]),
    ])
    def test_single_dimension(self, client, body, expected):
        assert ids(query(client, **body)) == expected

    def test_end_date_includes_whole_day(self, client):
        payload = query(client, dateRange={"end": "2024-03-10"})

        assert 1000 in ids(payload)
        assert 1001 not in ids(payload)

    def test_date_window(self, client):
        payload = query(client, dateRange={"start": "2024-03-05", "end": "2024-03-10"})

        assert ids(payload) == [1000, 1002]

    @pytest.mark.parametrize("term,expected", [
        ("BASELINE", [1000]),
        ("boston", [1002]),
        ("003", [1002]),
        ("gait", [1001, 1000, 1002]),
        ("%", []),
        ("l_n", []),
    ])
    def test_search(self, client, term, expected):
        assert ids(query(client, searchTerm=term)) == expected

    def test_adding_a_dimension_never_widens(self, client):
        everything = set(ids(query(client)))
        trial_a = set(ids(query(client, trials=["Trial A"])))
        trial_a_gait = set(ids(query(client, trials=["Trial A"], searchTerm="gait")))

        assert trial_a_gait <= trial_a <= everything

    def test_empty_sets_are_unconstrained(self, client):
        payload = query(client, trials=[], sites=[], libraries=[], countries=[], studyArms=[], procedures=[])

        assert payload["meta"]["total"] == 6

    def test_combined_filters(self, client):
        payload = query(client, trials=["Trial A"], countries=["Germany"], reviewStatus="pending")

        assert ids(payload) == [1001]

    @pytest.mark.parametrize("term", ["ÄRZTE", "ärzte", "übersicht"])
    def test_search_folds_non_ascii_case(self, client, db_session, term):
        db_session.get(Asset, 1004).filename = "Ärzte_Übersicht.mp4"
        db_session.commit()

        assert ids(query(client, searchTerm=term)) == [1004]


# =============================================================================
# Test Multiple Reviews
# =============================================================================

class TestMultipleReviews:
    """An asset with several live reviews is one record, reviewed per its latest review."""

    def add_review(self, db_session, **fields):
        db_session.add(AssetReview(asset_id=1000, user_id=2, **fields))
        db_session.commit()

    def test_second_review_does_not_duplicate_the_asset(self, client, db_session):
        self.add_review(db_session, reviewed=True, review_date=datetime(2024, 3, 15, 9, 0))

        payload = query(client, searchTerm="baseline_gait")

        assert ids(payload) == [1000]
        assert payload["meta"]["total"] == 1

    def test_page_agrees_with_total(self, client, db_session):
        self.add_review(db_session, reviewed=True, review_date=datetime(2024, 3, 15, 9, 0))

        for body in ({}, {"sortBy": "reviewed"}, {"reviewStatus": "reviewed"}):
            payload = query(client, **body)
            assert len(payload["data"]) == payload["meta"]["total"]
            assert len(set(ids(payload))) == len(ids(payload))

    def test_latest_live_review_wins(self, client, db_session):
        self.add_review(db_session, reviewed=True, review_date=datetime(2024, 3, 15, 9, 0))

        record = query(client, searchTerm="baseline_gait")["data"][0]

        assert record["reviewedBy"] == "Uma Uploader"
        assert record["reviewedDate"] == "2024-03-15"
        assert client.get("/api/v1/assets/1000").json()["data"]["reviewedBy"] == "Uma Uploader"

    def test_latest_review_drives_status_filter(self, client, db_session):
        self.add_review(db_session, reviewed=False)

        assert ids(query(client, reviewStatus="reviewed")) == []
        assert ids(query(client, reviewStatus="pending")) == [1001, 1000, 1002, 1003, 1004, 1006]

    def test_deleted_review_is_ignored(self, client, db_session):
        self.add_review(db_session, reviewed=False, deleted_at=datetime(2024, 3, 16))

        record = query(client, reviewStatus="reviewed")["data"][0]

        assert record["assetId"] == 1000
        assert record["reviewedBy"] == "Rita Reviewer"


# =============================================================================
# Test Errors
# =============================================================================

class TestQueryErrors:
    """400 before the database, 500 on store failure."""

    def test_sites_mode_with_libraries(self, client):
        response = client.post(QUERY_URL, json={"dataViewMode": "sites", "libraries": ["Library One"]})

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "libraries" in response.json()["error"]

    def test_malformed_date(self, client):
        response = client.post(QUERY_URL, json={"dateRange": {"end": "10/03/2024"}})

        assert response.status_code == 400
        assert "Malformed date" in response.json()["error"]

    def test_unknown_review_status(self, client):
        response = client.post(QUERY_URL, json={"reviewStatus": "maybe"})

        assert response.status_code == 400

    def test_non_list_filter(self, client):
        response = client.post(QUERY_URL, json={"sites": {"name": "Site Berlin"}})

        assert response.status_code == 400

    def test_store_failure(self, client):
        with patch.object(SqlAssetStore, "count", side_effect=RuntimeError("connection reset")):
            response = client.post(QUERY_URL, json={})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Failed to query assets"}


# =============================================================================
# Test Asset Detail
# =============================================================================

class TestAssetDetail:
    """GET /api/v1/assets/{asset_id}."""

    def test_detail_with_comments(self, client):
        response = client.get("/api/v1/assets/1000")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["assetId"] == 1000
        assert data["comments"] == "Looks good | Check audio"
        assert [c["comment"] for c in data["commentList"]] == ["Looks good", "Check audio"]
        assert data["commentList"][0]["author"] == {"name": "Rita Reviewer", "email": "rita@example.com"}
        assert data["commentList"][0]["createdAt"] == "2024-03-12T10:00:00"

    def test_detail_without_comments(self, client):
        data = client.get("/api/v1/assets/1004").json()["data"]

        assert data["libraryName"] == "Library One"
        assert data["commentList"] == []

    def test_soft_deleted_asset_is_not_found(self, client):
        response = client.get("/api/v1/assets/1005")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Asset not found"}

    def test_unknown_asset(self, client):
        assert client.get("/api/v1/assets/424242").status_code == 404


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
