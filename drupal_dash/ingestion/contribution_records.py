"""
drupal_dash/ingestion/contribution_records.py — Contribution credits by organization.

Pages through the contribution records listing for one organization:

    GET {contribution_api_base}?organization=<org>&months=<n>&page=<i>&limit=50

The listing is not formally documented. Its rows have been seen both bare and
wrapped, and the field names below are best guesses that should be checked
against live responses; adjusting CREDIT_FIELDS is the only change needed
when upstream renames a field.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from drupal_dash.config import DEFAULT_CONFIG, DashConfig
from drupal_dash.ingestion.fields import (
    FieldSpec,
    normalize_row,
    parse_timestamp,
    to_bool,
    to_int,
    to_str,
)
from drupal_dash.ingestion.pagination import ProgressCallback, fetch_with_cache, paginate
from drupal_dash.models import CreditRecord, FetchResult
from drupal_dash.storage.cache import cache_key

logger = logging.getLogger(__name__)

CREDITS_PAGE_SIZE = 50

UNKNOWN = "unknown"

CREDIT_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("username", ("username", "user_name", "author.name"), to_str, default=UNKNOWN),
    FieldSpec(
        "project_key",
        ("project_machine_name", "project.machine_name", "project"),
        to_str,
        default=UNKNOWN,
    ),
    FieldSpec(
        "date",
        ("created", "date", "changed"),
        parse_timestamp,
        default_factory=lambda ctx: ctx["fetched_at"],
    ),
    FieldSpec("weight", ("weight", "credit_count"), to_int, default=1),
    FieldSpec("is_security_advisory", ("is_sa", "is_security_advisory"), to_bool, default=False),
)


def parse_credit_row(row: dict, fetched_at: datetime) -> CreditRecord:
    """Normalize one raw listing row into a CreditRecord."""
    fields = normalize_row(row, CREDIT_FIELDS, {"fetched_at": fetched_at})
    return CreditRecord(**fields)


async def fetch_contribution_records(
    client: httpx.AsyncClient,
    store,
    org: str,
    months: int,
    on_progress: Optional[ProgressCallback] = None,
    config: DashConfig = DEFAULT_CONFIG,
) -> FetchResult:
    """Fetch every contribution credit for *org* over the last *months* months.

    Args:
        client:      Session HTTP client.
        store:       CacheStore consulted before any request (None disables caching).
        org:         Organization name.
        months:      Lookback window passed to the listing.
        on_progress: Called with the cumulative record count after each page.
        config:      Supplies contribution_api_base.

    Returns:
        FetchResult of CreditRecord. A failing page yields a PARTIAL result.
    """
    url = config.contribution_api_base
    key = cache_key("contributionRecords", {"org": org, "months": months, "url": url})
    fetched_at = datetime.now(tz=timezone.utc)

    def params_for_page(page: int) -> dict:
        return {"organization": org, "months": months, "page": page, "limit": CREDITS_PAGE_SIZE}

    async def fetch() -> FetchResult:
        logger.info("Fetching contribution credits for %s (%d months)", org, months)
        return await paginate(
            client,
            source="credits",
            url=url,
            params_for_page=params_for_page,
            parse_row=lambda row: parse_credit_row(row, fetched_at),
            page_size=CREDITS_PAGE_SIZE,
            on_progress=on_progress,
        )

    return await fetch_with_cache(store, key, fetch, CreditRecord.from_dict)
