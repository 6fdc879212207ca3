"""
Unit tests for the paginated credits fetch — page termination, partial
results, caching and field aliasing.
"""
import asyncio
from datetime import datetime, timezone

from drupal_dash.ingestion import pagination
from drupal_dash.ingestion.contribution_records import (
    CREDITS_PAGE_SIZE,
    fetch_contribution_records,
    parse_credit_row,
)
from drupal_dash.models import FetchStatus

FETCHED_AT = datetime(2026, 3, 15, tzinfo=timezone.utc)


def _rows(page: int, count: int) -> list[dict]:
    return [
        {
            "username": f"user{page}_{i}",
            "project_machine_name": "webform",
            "created": 1_767_225_600 + i,
        }
        for i in range(count)
    ]


def _paged_handler(recorder, sizes, fail_on=None):
    def handler(request):
        page = recorder.page(request)
        if fail_on is not None and page == fail_on:
            return recorder.json({"error": "boom"}, status_code=500)
        count = sizes[page] if page < len(sizes) else 0
        return recorder.json(_rows(page, count))
    return handler


def _fetch(client, store=None, **kwargs):
    return asyncio.run(fetch_contribution_records(client, store, "CivicActions", 12, **kwargs))


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


def test_short_last_page_ends_pagination(recorder):
    client = recorder.client(_paged_handler(recorder, [50, 50, 12]))

    result = _fetch(client)

    assert len(recorder.requests) == 3
    assert len(result.records) == 112
    assert result.status is FetchStatus.COMPLETE
    assert [recorder.page(r) for r in recorder.requests] == [0, 1, 2]


def test_request_parameters(recorder):
    client = recorder.client(_paged_handler(recorder, [3]))
    _fetch(client)

    params = recorder.requests[0].url.params
    assert params["organization"] == "CivicActions"
    assert params["months"] == "12"
    assert params["limit"] == str(CREDITS_PAGE_SIZE)


def test_empty_page_ends_pagination(recorder):
    client = recorder.client(_paged_handler(recorder, [50, 0]))
    result = _fetch(client)
    assert len(recorder.requests) == 2
    assert len(result.records) == 50


def test_failing_second_page_returns_first_page(recorder):
    client = recorder.client(_paged_handler(recorder, [50, 50], fail_on=1))

    result = _fetch(client)

    assert len(result.records) == 50
    assert result.status is FetchStatus.PARTIAL
    assert result.error.page == 1
    assert result.error.accumulated == 50


def test_failing_first_page_is_failed_not_raised(recorder):
    client = recorder.client(_paged_handler(recorder, [], fail_on=0))
    result = _fetch(client)
    assert result.records == []
    assert result.status is FetchStatus.FAILED


def test_page_ceiling_marks_truncated(recorder):
    client = recorder.client(_paged_handler(recorder, [50] * 10))

    result = asyncio.run(
        pagination.paginate(
            client,
            source="credits",
            url="https://example.test/credits",
            params_for_page=lambda page: {"page": page},
            parse_row=lambda row: row,
            page_size=50,
            max_pages=3,
        )
    )

    assert len(recorder.requests) == 3
    assert result.truncated


def test_progress_reports_cumulative_counts(recorder):
    seen = []
    client = recorder.client(_paged_handler(recorder, [50, 7]))
    _fetch(client, on_progress=seen.append)
    assert seen == [50, 57]


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


def test_second_call_within_ttl_makes_no_requests(recorder, store):
    client = recorder.client(_paged_handler(recorder, [50, 12]))

    first = _fetch(client, store)
    requests_after_first = len(recorder.requests)
    second = _fetch(client, store)

    assert len(recorder.requests) == requests_after_first
    assert second.from_cache
    assert second.records == first.records


def test_partial_results_are_not_cached(recorder, store):
    client = recorder.client(_paged_handler(recorder, [50, 50], fail_on=1))

    _fetch(client, store)
    _fetch(client, store)

    assert len(recorder.requests) == 4


# ---------------------------------------------------------------------------
# Row shapes and aliases
# ---------------------------------------------------------------------------


def test_wrapped_listing_shapes(recorder):
    for wrapper in ("results", "list", "rows"):
        recorder.requests.clear()
        client = recorder.client(lambda request, w=wrapper: recorder.json({w: _rows(0, 3)}))
        result = _fetch(client)
        assert len(result.records) == 3, wrapper


def test_results_key_wins_over_rows():
    from drupal_dash.ingestion.fields import unwrap_rows

    rows = unwrap_rows({"rows": [{"a": 1}], "results": [{"b": 2}]})
    assert rows == [{"b": 2}]


def test_aliases_and_defaults():
    record = parse_credit_row(
        {"user_name": "Alice", "credit_count": "3", "is_sa": 1},
        FETCHED_AT,
    )
    assert record.username == "Alice"
    assert record.project_key == "unknown"
    assert record.weight == 3
    assert record.is_security_advisory is True
    assert record.date == FETCHED_AT


def test_nested_project_alias():
    record = parse_credit_row({"author": {"name": "bob"}, "project": {"machine_name": "views"}}, FETCHED_AT)
    assert record.username == "bob"
    assert record.project_key == "views"
    assert record.weight == 1


def test_missing_username_is_unknown():
    record = parse_credit_row({"created": "2026-01-05T10:00:00Z"}, FETCHED_AT)
    assert record.username == "unknown"
    assert record.date == datetime(2026, 1, 5, 10, tzinfo=timezone.utc)


def test_integral_float_weight_is_kept():
    assert parse_credit_row({"username": "a", "weight": 2.0}, FETCHED_AT).weight == 2
    assert parse_credit_row({"username": "a", "weight": "3.0"}, FETCHED_AT).weight == 3
    assert parse_credit_row({"username": "a", "weight": 2.5}, FETCHED_AT).weight == 1


def test_out_of_range_timestamp_falls_back_to_fetch_time():
    for bad in (10**30, "inf", float("inf")):
        record = parse_credit_row({"username": "a", "created": bad}, FETCHED_AT)
        assert record.date == FETCHED_AT


def test_bad_timestamp_on_later_page_does_not_abort_fetch(recorder):
    def handler(request):
        page = recorder.page(request)
        if page == 0:
            return recorder.json(_rows(0, 50))
        if page == 1:
            return recorder.json([{"username": "late", "created": 10**30}])
        return recorder.json([])

    result = _fetch(recorder.client(handler))

    assert result.status is FetchStatus.COMPLETE
    assert len(result.records) == 51
    assert result.records[-1].username == "late"
