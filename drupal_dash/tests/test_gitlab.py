"""
Unit tests for drupal_dash.ingestion.gitlab — MR URL parsing, listing
pagination and token-gated detail enrichment.
"""
import asyncio
from datetime import datetime, timezone

from drupal_dash.ingestion.gitlab import (
    fetch_merge_request_details,
    fetch_merge_requests,
    merge_request_from_row,
    parse_merge_request_url,
)
from drupal_dash.models import MergeRequestState
from drupal_dash.storage.cache import GITLAB_TOKEN_KEY

MR_URL = "https://git.drupalcode.org/project/webform/-/merge_requests/42"

MR_DETAIL = {
    "iid": 42,
    "state": "merged",
    "created_at": "2026-01-10T12:00:00.000Z",
    "merged_at": "2026-01-12T08:30:00.000Z",
    "closed_at": None,
    "author": {"username": "alice"},
    "web_url": MR_URL,
}


# ---------------------------------------------------------------------------
# URL parsing
# ---------------------------------------------------------------------------


def test_parse_merge_request_url():
    assert parse_merge_request_url(MR_URL) == ("project/webform", 42)


def test_parse_nested_group_path():
    url = "https://git.drupalcode.org/issue/webform-3412345/-/merge_requests/3"
    assert parse_merge_request_url(url) == ("issue/webform-3412345", 3)


def test_parse_malformed_url():
    assert parse_merge_request_url("https://git.drupalcode.org/project/webform") is None
    assert parse_merge_request_url("") is None


def test_malformed_url_detail_is_unknown(recorder, store):
    client = recorder.client(lambda request: recorder.json(MR_DETAIL))

    mr = asyncio.run(fetch_merge_request_details(client, store, "not a url", token="t"))

    assert mr.state is MergeRequestState.UNKNOWN
    assert recorder.requests == []


# ---------------------------------------------------------------------------
# Detail enrichment
# ---------------------------------------------------------------------------


def test_no_token_means_no_request(recorder, store):
    client = recorder.client(lambda request: recorder.json(MR_DETAIL))

    mr = asyncio.run(fetch_merge_request_details(client, store, MR_URL))

    assert recorder.requests == []
    assert mr.project_path == "project/webform"
    assert mr.iid == 42
    assert mr.state is MergeRequestState.UNKNOWN


def test_token_from_store_is_sent_as_bearer(recorder, store):
    store.set(GITLAB_TOKEN_KEY, "glpat-abc")
    client = recorder.client(lambda request: recorder.json(MR_DETAIL))

    mr = asyncio.run(fetch_merge_request_details(client, store, MR_URL))

    request = recorder.requests[0]
    assert request.headers["Authorization"] == "Bearer glpat-abc"
    assert request.url.raw_path.decode().endswith("/projects/project%2Fwebform/merge_requests/42")
    assert mr.state is MergeRequestState.MERGED
    assert mr.author_username == "alice"
    assert mr.merged_at == datetime(2026, 1, 12, 8, 30, tzinfo=timezone.utc)


def test_detail_failure_returns_identity(recorder, store):
    client = recorder.client(lambda request: recorder.json({"message": "403"}, status_code=403))

    mr = asyncio.run(fetch_merge_request_details(client, store, MR_URL, token="bad"))

    assert mr.iid == 42
    assert mr.state is MergeRequestState.UNKNOWN


def test_detail_is_cached(recorder, store):
    client = recorder.client(lambda request: recorder.json(MR_DETAIL))

    first = asyncio.run(fetch_merge_request_details(client, store, MR_URL, token="t"))
    second = asyncio.run(fetch_merge_request_details(client, store, MR_URL, token="t"))

    assert first == second
    assert len(recorder.requests) == 1


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def test_listing_pages_are_one_based(recorder, store):
    def handler(request):
        page = int(request.url.params["page"])
        count = 2 if page == 1 else 1
        return recorder.json([dict(MR_DETAIL, iid=page * 10 + i) for i in range(count)])

    client = recorder.client(handler)
    result = asyncio.run(fetch_merge_requests(client, store, "project/webform", per_page=2))

    assert [r.url.params["page"] for r in recorder.requests] == ["1", "2"]
    assert [mr.iid for mr in result.records] == [10, 11, 20]
    assert all(mr.project_path == "project/webform" for mr in result.records)


def test_listing_state_filter(recorder, store):
    client = recorder.client(lambda request: recorder.json([]))
    asyncio.run(fetch_merge_requests(client, store, "project/drupal", state="merged"))
    assert recorder.requests[0].url.params["state"] == "merged"


def test_unrecognised_state_is_unknown():
    mr = merge_request_from_row({"iid": 1, "state": "draft"}, "project/x")
    assert mr.state is MergeRequestState.UNKNOWN
    assert mr.created_at is None
