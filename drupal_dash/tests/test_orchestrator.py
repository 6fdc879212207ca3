"""
Unit tests for drupal_dash.ingestion.orchestrator — a full session against
mocked upstreams, the fatal roster path and degraded sources.
"""
import asyncio
from datetime import date, datetime, timezone

import pytest

from drupal_dash.config import DashConfig
from drupal_dash.ingestion.orchestrator import run_session
from drupal_dash.models import FetchStatus, MergeRequestState
from drupal_dash.storage.cache import GITLAB_TOKEN_KEY

TODAY = date(2026, 3, 15)
MR_URL = "https://git.drupalcode.org/project/webform/-/merge_requests/42"


def _ts(year: int, month: int, day: int = 10) -> int:
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())


def _mr(iid: int, author: str = "alice") -> dict:
    return {
        "iid": iid,
        "state": "merged",
        "created_at": "2026-02-01T10:00:00Z",
        "merged_at": "2026-02-03T10:00:00Z",
        "author": {"username": author},
        "web_url": f"https://git.drupalcode.org/project/webform/-/merge_requests/{iid}",
    }


class Upstreams:
    """Routes each mocked upstream; individual sources can be switched to failing."""

    def __init__(self, recorder, roster_html: str, failing: tuple = ()) -> None:
        self.recorder = recorder
        self.roster_html = roster_html
        self.failing = set(failing)

    def __call__(self, request):
        r = self.recorder
        host, path = request.url.host, request.url.path

        if host in ("www.drupal.org", "api.allorigins.win") and "/api-d7/" not in path:
            if "roster" in self.failing:
                return r.html("unavailable", status_code=503)
            return r.html(self.roster_html)

        if host == "new.drupal.org":
            if "credits" in self.failing:
                return r.json({"error": "down"}, status_code=500)
            return r.json({"results": [
                {"username": "Alice", "project_machine_name": "webform", "created": _ts(2026, 2)},
                {"username": "bob", "project_machine_name": "views", "created": _ts(2026, 3), "weight": 2},
            ]})

        if path.endswith("/user.json"):
            uids = {"alice": 1, "bob": 2}
            uid = uids.get(request.url.params["name"].lower())
            return r.json({"list": [{"uid": uid}] if uid else []})

        if path.endswith("/comment.json"):
            if "comments" in self.failing:
                return r.json({}, status_code=500)
            if request.url.params["uid"] == "1":
                return r.json({"list": [{"cid": 11, "nid": 100, "created": _ts(2026, 2)}]})
            return r.json({"list": []})

        if path.endswith("/node.json"):
            return r.json({"list": [
                {"nid": 100, "type": "project_issue", "field_project": {"machine_name": "webform"}}
            ]})

        if host == "git.drupalcode.org":
            if request.url.path.endswith("/merge_requests"):
                if "merge_requests" in self.failing:
                    return r.json({}, status_code=500)
                return r.json([_mr(7), _mr(8, author="stranger")])
            return r.json(dict(_mr(42), state="opened", merged_at=None))

        return r.json({}, status_code=404)


def _config(**overrides) -> DashConfig:
    values = dict(cache_dir=None, months=3, gitlab_projects=("project/webform",))
    values.update(overrides)
    return DashConfig(**values)


def _run(recorder, upstreams, store, config=None, on_status=None):
    client = recorder.client(upstreams)
    return asyncio.run(
        run_session(config or _config(), client=client, store=store, on_status=on_status, today=TODAY)
    )


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


def test_complete_session(recorder, store, views_table_roster):
    messages = []
    result = _run(recorder, Upstreams(recorder, views_table_roster), store, on_status=messages.append)

    assert result.status is FetchStatus.COMPLETE
    assert result.error is None
    assert result.errors == []
    assert result.month_labels == ["2026-01", "2026-02", "2026-03"]
    assert [p.key for p in result.people] == ["alice", "bob", "carol smith"]
    assert result.people[0].uid == 1

    agg = result.aggregated
    assert agg.credits_by_month == {"2026-01": 0, "2026-02": 1, "2026-03": 2}
    assert agg.by_person["alice"].credits == 1
    assert agg.by_person["alice"].comments == 1
    assert agg.by_person["alice"].mrs == 1
    assert agg.by_project["webform"].comment_count == 1
    assert agg.by_project["project/webform"].mr_count == 2

    comment = result.comments[0]
    assert comment.username == "alice"
    assert comment.project_key == "webform"

    assert messages[0] == "Fetching roster..."
    assert messages == result.status_log
    assert any(m.startswith("Fetched 2 credits") for m in messages)


def test_comments_can_be_disabled(recorder, store, views_table_roster):
    result = _run(recorder, Upstreams(recorder, views_table_roster), store,
                  config=_config(fetch_comments=False))

    assert result.comments == []
    assert not any(p.endswith("/user.json") for p in recorder.paths())


# ---------------------------------------------------------------------------
# Fatal and degraded outcomes
# ---------------------------------------------------------------------------


def test_roster_failure_is_fatal(recorder, store, views_table_roster):
    result = _run(recorder, Upstreams(recorder, views_table_roster, failing=("roster",)), store)

    assert result.status is FetchStatus.FAILED
    assert result.status == "failed"
    assert "roster" in result.error
    assert result.credits == []
    assert result.aggregated.comments_by_month == {"2026-01": 0, "2026-02": 0, "2026-03": 0}
    assert all(r.url.host != "new.drupal.org" for r in recorder.requests)


def test_empty_roster_is_fatal(recorder, store):
    result = _run(recorder, Upstreams(recorder, "<html><body>no members</body></html>"), store)
    assert result.status is FetchStatus.FAILED
    assert result.people == []


@pytest.mark.parametrize("source", ["credits", "comments", "merge_requests"])
def test_source_failure_degrades_to_partial(recorder, store, views_table_roster, source):
    result = _run(recorder, Upstreams(recorder, views_table_roster, failing=(source,)), store)

    assert result.status is FetchStatus.PARTIAL
    assert result.error is None
    assert any(source in err["source"] for err in result.errors)
    assert len(result.people) == 3
    assert set(result.aggregated.comments_by_month) == set(result.month_labels)


def test_credits_failure_keeps_other_sources(recorder, store, views_table_roster):
    result = _run(recorder, Upstreams(recorder, views_table_roster, failing=("credits",)), store)

    assert result.credits == []
    assert len(result.comments) == 1
    assert len(result.merge_requests) == 2


# ---------------------------------------------------------------------------
# Credential and MR enrichment
# ---------------------------------------------------------------------------


def test_token_is_stored_and_used_for_details(recorder, store, views_table_roster):
    config = _config(gitlab_token="glpat-xyz", merge_request_urls=(MR_URL,))

    result = _run(recorder, Upstreams(recorder, views_table_roster), store, config=config)

    assert store.get(GITLAB_TOKEN_KEY) == "glpat-xyz"
    detail = [r for r in recorder.requests if r.url.path.endswith("/merge_requests/42")]
    assert detail[0].headers["Authorization"] == "Bearer glpat-xyz"
    enriched = [mr for mr in result.merge_requests if mr.iid == 42]
    assert enriched[0].state is MergeRequestState.OPENED


def test_details_without_token_keep_placeholder(recorder, store, views_table_roster):
    config = _config(merge_request_urls=(MR_URL,))

    result = _run(recorder, Upstreams(recorder, views_table_roster), store, config=config)

    assert not any(r.url.path.endswith("/merge_requests/42") for r in recorder.requests)
    placeholder = [mr for mr in result.merge_requests if mr.iid == 42][0]
    assert placeholder.state is MergeRequestState.UNKNOWN
    assert result.status is FetchStatus.COMPLETE


def test_unparseable_merge_request_url_is_skipped(recorder, store, views_table_roster):
    config = _config(merge_request_urls=("https://example.com/not/a/merge/request", MR_URL))

    result = _run(recorder, Upstreams(recorder, views_table_roster), store, config=config)

    assert all(mr.project_path for mr in result.merge_requests)
    assert "" not in result.aggregated.by_project
    assert result.status is FetchStatus.COMPLETE
