"""
drupal_dash/ingestion/drupal_api.py — drupal.org REST (api-d7) lookups.

Three lookups feed comment attribution:

    resolve_uid()             username -> numeric uid     (user.json?name=)
    fetch_comments_for_user() uid -> newest-first comments (comment.json?uid=)
    get_issue_details()       node ids -> project/type     (node.json?nid[0]=..)

Comments only reference their parent node, so the project a comment belongs
to needs the node lookup. Node and uid results are cached one entry per id so
repeated sessions only pay for ids they have not seen before.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

import httpx

from drupal_dash.config import DEFAULT_CONFIG, DashConfig
from drupal_dash.errors import FetchError
from drupal_dash.ingestion.fields import (
    FieldSpec,
    normalize_row,
    parse_timestamp,
    to_int,
    to_str,
    unwrap_rows,
)
from drupal_dash.ingestion.http import get_json
from drupal_dash.ingestion.pagination import (
    ProgressCallback,
    fetch_with_cache,
    paginate,
    polite_pause,
)
from drupal_dash.models import CommentEvent, FetchResult, IssueNode
from drupal_dash.storage.cache import cache_key

logger = logging.getLogger(__name__)

# api-d7 pages are small; a page shorter than this is treated as the last.
COMMENTS_PAGE_SIZE = 10
COMMENTS_MAX_PAGES = 10

NODE_BATCH_SIZE = 10

UID_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("uid", ("uid", "id"), to_int),
)

COMMENT_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("comment_id", ("cid", "id"), to_int),
    FieldSpec("node_id", ("node.id", "nid", "node_nid"), to_int),
    FieldSpec("author_uid", ("uid", "author.id"), to_int, default_factory=lambda ctx: ctx["uid"]),
    FieldSpec("created_at", ("created", "timestamp"), parse_timestamp),
    FieldSpec("username", ("name", "author.name"), to_str),
)

NODE_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("nid", ("nid", "id"), to_int),
    FieldSpec("type", ("type",), to_str, default=""),
    FieldSpec("title", ("title",), to_str, default=""),
    FieldSpec(
        "project_key",
        ("field_project.machine_name", "field_project_machine_name", "field_project.id"),
        to_str,
    ),
)


# ---------------------------------------------------------------------------
# uid resolution
# ---------------------------------------------------------------------------

async def resolve_uid(
    client: httpx.AsyncClient,
    store,
    username: str,
    config: DashConfig = DEFAULT_CONFIG,
) -> Optional[int]:
    """Resolve a drupal.org username to its numeric uid.

    Cached per lower-cased username. Lookup failures are logged and yield
    None; they never raise.
    """
    key = cache_key("uid", {"username": username.lower()})
    if store is not None:
        cached = store.get(key)
        if cached is not None:
            return int(cached)

    url = f"{config.drupal_api_base}/user.json"
    try:
        data = await get_json(client, url, params={"name": username})
    except FetchError as exc:
        logger.warning("Failed to resolve uid for %s: %s", username, exc)
        return None

    rows = unwrap_rows(data)
    if not rows:
        logger.info("No drupal.org account found for %s", username)
        return None

    uid = normalize_row(rows[0], UID_FIELDS)["uid"]
    if uid is None:
        logger.warning("user.json row for %s carries no uid", username)
        return None
    if store is not None:
        store.set(key, uid)
    return uid


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

def parse_comment_row(row: dict, uid: int) -> Optional[CommentEvent]:
    """Normalize one comment.json row; rows without ids or a date are skipped."""
    fields = normalize_row(row, COMMENT_FIELDS, {"uid": uid})
    if fields["comment_id"] is None or fields["node_id"] is None or fields["created_at"] is None:
        logger.debug("Skipping incomplete comment row: %s", row)
        return None
    return CommentEvent(**fields)


async def fetch_comments_for_user(
    client: httpx.AsyncClient,
    store,
    uid: int,
    since: datetime,
    on_progress: Optional[ProgressCallback] = None,
    config: DashConfig = DEFAULT_CONFIG,
) -> FetchResult:
    """Fetch a user's comments created at or after *since*.

    The listing is sorted newest first, so the walk ends at the first comment
    older than *since*.

    Returns:
        FetchResult of CommentEvent (project_key unset).
    """
    url = f"{config.drupal_api_base}/comment.json"
    key = cache_key("comments", {"uid": uid, "since": int(since.timestamp()), "url": url})

    def params_for_page(page: int) -> dict:
        return {"uid": uid, "sort": "created", "direction": "DESC", "page": page}

    async def fetch() -> FetchResult:
        return await paginate(
            client,
            source=f"comments[uid={uid}]",
            url=url,
            params_for_page=params_for_page,
            parse_row=lambda row: parse_comment_row(row, uid),
            page_size=COMMENTS_PAGE_SIZE,
            max_pages=COMMENTS_MAX_PAGES,
            stop_when=lambda comment: comment.created_at < since,
            on_progress=on_progress,
        )

    return await fetch_with_cache(store, key, fetch, CommentEvent.from_dict)


# ---------------------------------------------------------------------------
# Node details
# ---------------------------------------------------------------------------

def _node_key(nid: int) -> str:
    return cache_key("node", {"nid": nid})


async def get_issue_details(
    client: httpx.AsyncClient,
    store,
    nids: Iterable[int],
    config: DashConfig = DEFAULT_CONFIG,
) -> dict[int, IssueNode]:
    """Look up project/type metadata for a set of node ids.

    Cached nodes are served from the store; the rest are requested in batches
    of NODE_BATCH_SIZE as ``node.json?nid[0]=..&nid[1]=..``. A failing batch
    is logged and its nodes are simply absent from the result.

    Returns:
        Dict mapping nid to IssueNode for every node that could be resolved.
    """
    results: dict[int, IssueNode] = {}
    to_fetch: list[int] = []
    for nid in dict.fromkeys(nids):
        cached = store.get(_node_key(nid)) if store is not None else None
        if cached is not None:
            results[nid] = IssueNode.from_dict(cached)
        else:
            to_fetch.append(nid)

    if not to_fetch:
        return results

    url = f"{config.drupal_api_base}/node.json"
    logger.info(
        "Node details: %d cached, %d to fetch in batches of %d",
        len(results), len(to_fetch), NODE_BATCH_SIZE,
    )
    for start in range(0, len(to_fetch), NODE_BATCH_SIZE):
        if start > 0:
            await polite_pause()
        batch = to_fetch[start:start + NODE_BATCH_SIZE]
        params = {f"nid[{idx}]": nid for idx, nid in enumerate(batch)}
        try:
            data = await get_json(client, url, params=params)
        except FetchError as exc:
            logger.warning("Node batch %s failed: %s", batch, exc)
            continue

        for row in unwrap_rows(data):
            fields = normalize_row(row, NODE_FIELDS)
            if fields["nid"] is None:
                continue
            node = IssueNode(**fields)
            results[node.nid] = node
            if store is not None:
                store.set(_node_key(node.nid), node.to_dict())

    return results


def attribute_comments(
    comments: Iterable[CommentEvent],
    details: dict[int, IssueNode],
) -> list[CommentEvent]:
    """Copy *comments* with project_key taken from their node detail.

    Comments whose node is unknown, or has no project, keep project_key unset.
    """
    attributed: list[CommentEvent] = []
    for comment in comments:
        node = details.get(comment.node_id)
        if node is not None and node.project_key:
            comment = replace(comment, project_key=node.project_key)
        attributed.append(comment)
    return attributed
