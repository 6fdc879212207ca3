"""
drupal_dash/ingestion/gitlab.py — Merge requests from git.drupalcode.org.

Two entry points:

    fetch_merge_requests()        paginated MR listing for one project path
    fetch_merge_request_details() single MR by web URL, authenticated only

The detail endpoint is rate limited for anonymous callers, so without a
token the detail lookup returns what the URL itself says (project path and
iid, state UNKNOWN) and makes no request at all.
"""

import logging
import re
from dataclasses import replace
from typing import Optional
from urllib.parse import quote

import httpx

from drupal_dash.config import DEFAULT_CONFIG, DashConfig
from drupal_dash.errors import FetchError
from drupal_dash.ingestion.fields import FieldSpec, normalize_row, parse_timestamp, to_int, to_str
from drupal_dash.ingestion.http import get_json
from drupal_dash.ingestion.pagination import MAX_PAGES, ProgressCallback, fetch_with_cache, paginate
from drupal_dash.models import FetchResult, MergeRequest, MergeRequestState
from drupal_dash.storage.cache import GITLAB_TOKEN_KEY, cache_key

logger = logging.getLogger(__name__)

MR_URL_PATTERN = re.compile(r"^https?://[^/]+/(?P<path>.+?)/-/merge_requests/(?P<iid>\d+)")

MR_PAGE_SIZE = 50

MR_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("iid", ("iid",), to_int, default=0),
    FieldSpec("state", ("state",), MergeRequestState.parse, default=MergeRequestState.UNKNOWN),
    FieldSpec("created_at", ("created_at",), parse_timestamp),
    FieldSpec("merged_at", ("merged_at",), parse_timestamp),
    FieldSpec("closed_at", ("closed_at",), parse_timestamp),
    FieldSpec("author_username", ("author.username", "author_username"), to_str),
    FieldSpec("web_url", ("web_url",), to_str, default=""),
)


def parse_merge_request_url(url: str) -> Optional[tuple[str, int]]:
    """Split an MR web URL into (project_path, iid).

    >>> parse_merge_request_url("https://git.drupalcode.org/project/webform/-/merge_requests/42")
    ('project/webform', 42)

    Returns:
        The tuple, or None when *url* does not look like an MR URL.
    """
    match = MR_URL_PATTERN.match(url or "")
    if match is None:
        return None
    return match.group("path"), int(match.group("iid"))


def _project_api_url(config: DashConfig, project_path: str) -> str:
    return f"{config.gitlab_api_base}/projects/{quote(project_path, safe='')}"


def merge_request_from_row(row: dict, project_path: str, url: str = "") -> MergeRequest:
    """Normalize a GitLab MR payload (listing row or detail body)."""
    fields = normalize_row(row, MR_FIELDS)
    web_url = fields["web_url"]
    return MergeRequest(url=url or web_url, project_path=project_path, **fields)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

async def fetch_merge_requests(
    client: httpx.AsyncClient,
    store,
    project_path: str,
    state: Optional[str] = None,
    per_page: int = MR_PAGE_SIZE,
    max_pages: int = MAX_PAGES,
    on_progress: Optional[ProgressCallback] = None,
    config: DashConfig = DEFAULT_CONFIG,
) -> FetchResult:
    """Fetch the MR listing for one project.

    GitLab numbers pages from 1; page index i is requested as page=i+1.

    Args:
        client:       Session HTTP client.
        store:        CacheStore (None disables caching).
        project_path: e.g. "project/webform".
        state:        Optional state filter passed to the listing.
        per_page:     Page size requested and used as the last-page threshold.
        max_pages:    Page ceiling for the listing.
        on_progress:  Called with the cumulative record count after each page.
        config:       Supplies gitlab_api_base.

    Returns:
        FetchResult of MergeRequest.
    """
    url = f"{_project_api_url(config, project_path)}/merge_requests"
    key = cache_key(
        "mergeRequests",
        {"project": project_path, "state": state, "per_page": per_page, "max_pages": max_pages, "url": url},
    )

    def params_for_page(page: int) -> dict:
        params = {"per_page": per_page, "page": page + 1}
        if state:
            params["state"] = state
        return params

    async def fetch() -> FetchResult:
        logger.info("Fetching merge requests for %s", project_path)
        return await paginate(
            client,
            source=f"merge_requests[{project_path}]",
            url=url,
            params_for_page=params_for_page,
            parse_row=lambda row: merge_request_from_row(row, project_path),
            page_size=per_page,
            max_pages=max_pages,
            on_progress=on_progress,
        )

    return await fetch_with_cache(store, key, fetch, MergeRequest.from_dict)


# ---------------------------------------------------------------------------
# Detail enrichment
# ---------------------------------------------------------------------------

async def fetch_merge_request_details(
    client: httpx.AsyncClient,
    store,
    mr_url: str,
    token: Optional[str] = None,
    config: DashConfig = DEFAULT_CONFIG,
) -> MergeRequest:
    """Enrich a single MR from its web URL.

    Args:
        client: Session HTTP client.
        store:  CacheStore; also consulted for the token under GITLAB_TOKEN_KEY
                when *token* is not given.
        mr_url: MR web URL, e.g. https://git.drupalcode.org/project/x/-/merge_requests/7
        token:  Bearer credential for the detail endpoint.
        config: Supplies gitlab_api_base.

    Returns:
        A fully populated MergeRequest when an authenticated lookup succeeds,
        otherwise a placeholder with state UNKNOWN. Never raises.
    """
    parsed = parse_merge_request_url(mr_url)
    if parsed is None:
        logger.warning("Not a merge request URL: %s", mr_url)
        return MergeRequest(url=mr_url)

    project_path, iid = parsed
    identity = MergeRequest(url=mr_url, project_path=project_path, iid=iid, web_url=mr_url)

    key = cache_key("mr", {"project": project_path, "iid": iid})
    if store is not None:
        cached = store.get(key)
        if cached is not None:
            return MergeRequest.from_dict(cached)

    if token is None and store is not None:
        token = store.get(GITLAB_TOKEN_KEY)
    if not token:
        logger.debug("No GitLab token — returning identity only for %s", mr_url)
        return identity

    url = f"{_project_api_url(config, project_path)}/merge_requests/{iid}"
    try:
        data = await get_json(client, url, headers={"Authorization": f"Bearer {token}"})
    except FetchError as exc:
        logger.warning("Failed to fetch MR %s: %s", mr_url, exc)
        return identity
    if not isinstance(data, dict):
        logger.warning("Unexpected MR detail payload for %s: %s", mr_url, type(data).__name__)
        return identity

    mr = merge_request_from_row(data, project_path, url=mr_url)
    mr = replace(mr, iid=iid, web_url=mr.web_url or mr_url)
    if store is not None:
        store.set(key, mr.to_dict())
    return mr
