"""
drupal_dash/ingestion/http.py — Async HTTP helpers shared by every fetcher.

All upstream traffic goes through one httpx.AsyncClient per session. The
helpers here turn transport errors, non-2xx responses and undecodable bodies
into FetchError so fetchers only ever handle one exception type.

No explicit timeout is configured; httpx's transport default applies.
"""

import logging
from typing import Any, Optional

import httpx

from drupal_dash import __version__
from drupal_dash.errors import FetchError

logger = logging.getLogger(__name__)

USER_AGENT = f"drupal-dash/{__version__} (+https://www.drupal.org/project/drupal_dash)"


def build_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Create the session's AsyncClient.

    Args:
        transport: Optional transport override (httpx.MockTransport in tests).
    """
    return httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT, "Accept": "application/json, text/html"},
        follow_redirects=True,
        transport=transport,
    )


async def _get(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> httpx.Response:
    try:
        resp = await client.get(url, params=params, headers=headers)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning("Network error fetching %s: %s", url, exc)
        raise FetchError(url, f"network error: {exc}") from exc
    if not resp.is_success:
        logger.warning("HTTP %d fetching %s", resp.status_code, resp.url)
        raise FetchError(str(resp.url), f"HTTP {resp.status_code}", resp.status_code)
    return resp


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> Any:
    """GET *url* and decode the JSON body.

    Raises:
        FetchError: On network errors, non-2xx statuses or an invalid JSON body.
    """
    resp = await _get(client, url, params=params, headers=headers)
    try:
        return resp.json()
    except ValueError as exc:
        raise FetchError(str(resp.url), "invalid JSON body", resp.status_code) from exc


async def get_text(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> str:
    """GET *url* and return the decoded text body.

    Raises:
        FetchError: On network errors or non-2xx statuses.
    """
    resp = await _get(client, url, params=params, headers=headers)
    return resp.text
