"""
drupal_dash/ingestion/orchestrator.py — Fetch session orchestration.

Runs every upstream source for one organization in a fixed order and folds
the results into an AggregatedData:

    1. roster              (fatal on failure)
    2. contribution credits
    3. per person: uid resolution, then comments since the window start
    4. node details -> project attribution of comments
    5. merge request listings for each configured project
    6. detail enrichment of configured MR URLs (token only)
    7. aggregation

Only the roster is required. Every other stage is wrapped so its failure is
recorded in SessionResult.errors and the session degrades to "partial" while
the stages already done keep their data.

Usage:
    from drupal_dash.ingestion.orchestrator import run_session_sync
    result = run_session_sync(DEFAULT_CONFIG)
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Callable, Optional

import httpx

from drupal_dash.config import DEFAULT_CONFIG, DashConfig
from drupal_dash.errors import EmptyRosterError, FetchError
from drupal_dash.ingestion.contribution_records import fetch_contribution_records
from drupal_dash.ingestion.drupal_api import (
    attribute_comments,
    fetch_comments_for_user,
    get_issue_details,
    resolve_uid,
)
from drupal_dash.ingestion.gitlab import fetch_merge_request_details, fetch_merge_requests
from drupal_dash.ingestion.http import build_client
from drupal_dash.ingestion.roster import fetch_roster
from drupal_dash.metrics.aggregate import aggregate, month_labels, window_start
from drupal_dash.models import (
    AggregatedData,
    CommentEvent,
    CreditRecord,
    FetchResult,
    FetchStatus,
    MergeRequest,
    MergeRequestState,
    Person,
)
from drupal_dash.storage.cache import GITLAB_TOKEN_KEY, CacheStore

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class SessionResult:
    """Complete output of one fetch session.

    Attributes:
        status:         COMPLETE, PARTIAL (some source degraded) or FAILED (roster).
        error:          Terminal error message when status is FAILED.
        errors:         One dict per degraded source: {"source", "error"}.
        people:         Roster members, uid filled where resolved.
        credits:        Contribution credits.
        comments:       Comment events with username / project_key attributed.
        merge_requests: Listed and enriched merge requests.
        month_labels:   The "YYYY-MM" window, oldest first.
        aggregated:     Rollups for presentation.
        status_log:     Every progress message emitted during the session.
        generated_at:   Session start (UTC).
    """

    status: FetchStatus = FetchStatus.COMPLETE
    error: Optional[str] = None
    errors: list[dict] = field(default_factory=list)
    people: list[Person] = field(default_factory=list)
    credits: list[CreditRecord] = field(default_factory=list)
    comments: list[CommentEvent] = field(default_factory=list)
    merge_requests: list[MergeRequest] = field(default_factory=list)
    month_labels: list[str] = field(default_factory=list)
    aggregated: AggregatedData = field(default_factory=AggregatedData)
    status_log: list[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def degrade(self, source: str, error: object) -> None:
        """Record a non-fatal failure of *source*."""
        self.errors.append({"source": source, "error": str(error)})
        if self.status is FetchStatus.COMPLETE:
            self.status = FetchStatus.PARTIAL


class _Session:
    """Mutable state for one run: client, store, status reporting, result."""

    def __init__(
        self,
        config: DashConfig,
        client: httpx.AsyncClient,
        store: CacheStore,
        on_status: Optional[StatusCallback],
        result: SessionResult,
    ) -> None:
        self.config = config
        self.client = client
        self.store = store
        self.on_status = on_status
        self.result = result

    def status(self, message: str) -> None:
        self.result.status_log.append(message)
        logger.info(message)
        if self.on_status is not None:
            self.on_status(message)

    def absorb(self, source: str, fetched: FetchResult) -> list:
        """Take the records of *fetched*, degrading the session if it was not complete."""
        if not fetched.ok:
            self.result.degrade(source, fetched.error or fetched.status.value)
        return list(fetched.records)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

async def _stage_credits(session: _Session) -> None:
    config = session.config
    fetched = await fetch_contribution_records(
        session.client,
        session.store,
        config.org,
        config.months,
        on_progress=lambda n: session.status(f"Fetched {n} credits..."),
        config=config,
    )
    session.result.credits = session.absorb("credits", fetched)
    session.status(f"Fetched {len(session.result.credits)} credits")


async def _stage_comments(session: _Session) -> None:
    result = session.result
    since = window_start(result.month_labels)
    by_uid: dict[int, Person] = {}

    for index, person in enumerate(result.people):
        session.status(f"Fetching comments for {person.username} ({index + 1}/{len(result.people)})...")
        uid = await resolve_uid(session.client, session.store, person.username, session.config)
        if uid is None:
            continue
        person = result.people[index] = replace(person, uid=uid)
        by_uid[uid] = person

        fetched = await fetch_comments_for_user(
            session.client, session.store, uid, since, config=session.config
        )
        result.comments.extend(session.absorb(f"comments[{person.username}]", fetched))

    if not result.comments:
        return

    session.status(f"Resolving projects for {len(result.comments)} comments...")
    details = await get_issue_details(
        session.client,
        session.store,
        (comment.node_id for comment in result.comments),
        session.config,
    )
    attributed = attribute_comments(result.comments, details)
    result.comments = [
        replace(comment, username=by_uid[comment.author_uid].username)
        if comment.author_uid in by_uid else comment
        for comment in attributed
    ]


async def _stage_merge_requests(session: _Session) -> None:
    config = session.config
    for project_path in config.gitlab_projects:
        session.status(f"Fetching merge requests for {project_path}...")
        fetched = await fetch_merge_requests(
            session.client,
            session.store,
            project_path,
            state=config.merge_request_state,
            config=config,
        )
        session.result.merge_requests.extend(
            session.absorb(f"merge_requests[{project_path}]", fetched)
        )


async def _stage_merge_request_details(session: _Session) -> None:
    known = {(mr.project_path, mr.iid): i for i, mr in enumerate(session.result.merge_requests)}
    for url in session.config.merge_request_urls:
        mr = await fetch_merge_request_details(
            session.client, session.store, url, config=session.config
        )
        if not mr.project_path:
            # unparseable URL; fetch_merge_request_details already logged it
            continue
        position = known.get((mr.project_path, mr.iid))
        if position is None:
            known[(mr.project_path, mr.iid)] = len(session.result.merge_requests)
            session.result.merge_requests.append(mr)
        elif mr.state is not MergeRequestState.UNKNOWN:
            session.result.merge_requests[position] = mr


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def run_session(
    config: DashConfig = DEFAULT_CONFIG,
    *,
    client: Optional[httpx.AsyncClient] = None,
    store: Optional[CacheStore] = None,
    on_status: Optional[StatusCallback] = None,
    today: Optional[date] = None,
) -> SessionResult:
    """Run one complete fetch session.

    Args:
        config:    Session configuration.
        client:    Injected HTTP client; when omitted one is built and closed here.
        store:     Injected CacheStore; CacheStore.from_config(config) otherwise.
        on_status: Receives each progress message.
        today:     Reference date for the month window (defaults to today, UTC).

    Returns:
        SessionResult. Never raises for upstream failures.
    """
    result = SessionResult()
    result.month_labels = month_labels(config.months, today)
    store = store if store is not None else CacheStore.from_config(config)
    if config.gitlab_token:
        store.set(GITLAB_TOKEN_KEY, config.gitlab_token)

    owns_client = client is None
    if owns_client:
        client = build_client()
    session = _Session(config, client, store, on_status, result)

    try:
        logger.info("═" * 60)
        logger.info("Fetch session: org=%s months=%d", config.org, config.months)
        logger.info("═" * 60)

        # ── Roster ─────────────────────────────────────────────────────────
        session.status("Fetching roster...")
        try:
            result.people = await fetch_roster(
                client,
                config.roster_url,
                proxy_url=config.proxy_url,
                store=store,
                follow_pager=config.follow_roster_pager,
            )
        except (FetchError, EmptyRosterError) as exc:
            logger.error("Roster unavailable: %s", exc)
            result.status = FetchStatus.FAILED
            result.error = f"Could not load the organization roster: {exc}"
            result.aggregated = aggregate([], [], [], [], result.month_labels)
            session.status("Failed")
            return result
        session.status(f"Found {len(result.people)} people")

        # ── Sources ────────────────────────────────────────────────────────
        stages = [("credits", _stage_credits)]
        if config.fetch_comments:
            stages.append(("comments", _stage_comments))
        stages.append(("merge_requests", _stage_merge_requests))
        if config.merge_request_urls:
            stages.append(("merge_request_details", _stage_merge_request_details))

        for name, stage in stages:
            try:
                await stage(session)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Stage %s failed: %s", name, exc)
                result.degrade(name, exc)

        # ── Aggregation ────────────────────────────────────────────────────
        session.status("Aggregating...")
        result.aggregated = aggregate(
            result.credits,
            result.comments,
            result.merge_requests,
            [person.username for person in result.people],
            result.month_labels,
        )
    finally:
        if owns_client:
            await client.aclose()

    logger.info(
        "Session %s: %d people, %d credits, %d comments, %d merge requests, %d errors",
        result.status.value, len(result.people), len(result.credits),
        len(result.comments), len(result.merge_requests), len(result.errors),
    )
    session.status("Done" if result.status is FetchStatus.COMPLETE else "Done (partial data)")
    return result


def run_session_sync(config: DashConfig = DEFAULT_CONFIG, **kwargs) -> SessionResult:
    """Blocking wrapper around run_session() for scripts and the CLI."""
    return asyncio.run(run_session(config, **kwargs))
