"""
drupal_dash/ingestion/pagination.py — Shared page loop for listing endpoints.

Every paginated source (credits, comments, merge requests) walks its listing
the same way:

    - page index starts at 0 and advances after each successful page;
    - a page with zero rows, or fewer rows than the nominal page size, is last;
    - MAX_PAGES (or a lower per-source ceiling) ends a runaway walk;
    - a failing page stops the walk and the rows gathered so far are returned
      as a PARTIAL FetchResult — nothing is raised to the caller;
    - POLITENESS_DELAY seconds pass between consecutive page requests.

The loop is strictly sequential: page N+1 is requested only after page N has
been parsed.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from drupal_dash.errors import FetchError, PartialResultError
from drupal_dash.ingestion.fields import unwrap_rows
from drupal_dash.ingestion.http import get_json
from drupal_dash.models import FetchResult, FetchStatus

logger = logging.getLogger(__name__)

# Fixed pause between page requests (seconds) to stay clear of upstream
# rate limiting.
POLITENESS_DELAY: float = 0.2

# Hard ceiling on pages per source.
MAX_PAGES: int = 50

ProgressCallback = Callable[[int], None]


async def polite_pause() -> None:
    """Sleep for POLITENESS_DELAY, yielding to the event loop."""
    if POLITENESS_DELAY > 0:
        await asyncio.sleep(POLITENESS_DELAY)


async def paginate(
    client: httpx.AsyncClient,
    *,
    source: str,
    url: str,
    params_for_page: Callable[[int], dict],
    parse_row: Callable[[dict], Optional[Any]],
    page_size: int,
    max_pages: int = MAX_PAGES,
    headers: Optional[dict] = None,
    stop_when: Optional[Callable[[Any], bool]] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> FetchResult:
    """Walk a paginated JSON listing and normalize its rows.

    Args:
        client:          Session HTTP client.
        source:          Logical source name, used in logs and errors.
        url:             Listing endpoint.
        params_for_page: Builds the query parameters for a zero-based page index.
        parse_row:       Normalizes one raw row; returning None skips the row.
        page_size:       Nominal rows per page; a shorter page is the last one.
        max_pages:       Page ceiling for this source.
        headers:         Extra request headers.
        stop_when:       Optional predicate; the first record for which it is
                         true is dropped and the walk ends (e.g. a date cutoff
                         on a newest-first listing).
        on_progress:     Called with the cumulative record count after each page.

    Returns:
        FetchResult with status COMPLETE, PARTIAL or FAILED.
    """
    records: list = []
    pages = 0
    truncated = False

    for page in range(max_pages):
        if page > 0:
            await polite_pause()

        logger.debug("%s: fetching page %d from %s", source, page, url)
        try:
            payload = await get_json(client, url, params=params_for_page(page), headers=headers)
        except FetchError as exc:
            error = PartialResultError(source, page, exc, len(records))
            status = FetchStatus.PARTIAL if records else FetchStatus.FAILED
            logger.warning("%s — returning %d records (%s)", error, len(records), status.value)
            return FetchResult(records=records, status=status, error=error, pages=pages)

        rows = unwrap_rows(payload)
        pages += 1
        if not rows:
            break

        stopped = False
        for row in rows:
            record = parse_row(row)
            if record is None:
                continue
            if stop_when is not None and stop_when(record):
                stopped = True
                break
            records.append(record)

        if on_progress is not None:
            on_progress(len(records))

        if stopped or len(rows) < page_size:
            break
    else:
        truncated = True
        logger.warning(
            "%s: page ceiling (%d) reached — results may be incomplete", source, max_pages
        )

    logger.info("%s: %d records from %d pages", source, len(records), pages)
    return FetchResult(records=records, status=FetchStatus.COMPLETE, pages=pages, truncated=truncated)


async def fetch_with_cache(
    store,
    key: str,
    fetch: Callable[[], Awaitable[FetchResult]],
    decode: Callable[[dict], Any],
) -> FetchResult:
    """Serve *key* from the cache store, or run *fetch* and cache a complete result.

    Records are stored via their to_dict() and rebuilt with *decode*. Partial
    and failed results are returned uncached so the next session retries.
    """
    if store is not None:
        cached = store.get(key)
        if cached is not None:
            logger.info("Cache hit for %s", key)
            return FetchResult(records=[decode(item) for item in cached], from_cache=True)

    result = await fetch()
    if store is not None and result.ok:
        store.set(key, [record.to_dict() for record in result.records])
    return result
