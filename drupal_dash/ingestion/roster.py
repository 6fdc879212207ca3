"""
drupal_dash/ingestion/roster.py — Organization roster scrape.

The roster only exists as an HTML page. It is requested directly first and,
when that fails for any reason, once more through a URL-forwarding proxy.

parse_roster_html() tries an ordered list of CSS selectors, most specific
first, and takes the first one that matches anything. When none match it
falls back to every link into a user profile, but only trusts that fallback
when it finds more than FALLBACK_MIN_LINKS links; a handful of profile links
on an unrelated page (a "5 results" block, a sidebar) is not a roster.

Uses BeautifulSoup (html.parser) for CSS selection.
"""

import logging
from typing import Optional
from urllib.parse import quote, unquote, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup, Tag

from drupal_dash.config import DEFAULT_CONFIG
from drupal_dash.errors import EmptyRosterError, FetchError
from drupal_dash.ingestion.http import get_text
from drupal_dash.ingestion.pagination import polite_pause
from drupal_dash.models import Person
from drupal_dash.storage.cache import cache_key

logger = logging.getLogger(__name__)

DRUPAL_ORG_BASE = "https://www.drupal.org"

# Structural strategies in priority order (Drupal Views table, Views list, bare
# table cell, username class).
ROSTER_SELECTORS: list[str] = [
    ".view-content td.views-field-name a, .view-content .views-field-name a",
    ".view-content .views-row .views-field-name a",
    "td.views-field-name a",
    ".user-name",
]

FALLBACK_SELECTOR = 'a[href^="/u/"], a[href^="/user/"]'
FALLBACK_MIN_LINKS = 5

NEXT_PAGE_SELECTOR = ".pager-next a, .pager__item--next a, a[rel~=next]"

# Column headings and labels that show up as link text in roster tables.
NON_NAME_HEADINGS = frozenset({"name", "username", "user", "member", "members", "people"})

MIN_USERNAME_LENGTH = 2


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _username_from_href(href: str) -> Optional[str]:
    """Return the username encoded in a /u/<name> profile path, if any."""
    path = urlparse(href).path
    if not path.startswith("/u/"):
        return None
    name = unquote(path[len("/u/"):]).strip("/").split("/")[0]
    return name or None


def _link_for(node: Tag) -> Optional[Tag]:
    if node.name == "a":
        return node
    return node.find("a", href=True)


def _person_from_node(node: Tag, base_url: str) -> Optional[Person]:
    link = _link_for(node)
    if link is None:
        return None
    href = (link.get("href") or "").strip()
    if not href:
        return None

    username = _username_from_href(href) or link.get_text(strip=True)
    if len(username) < MIN_USERNAME_LENGTH or username.lower() in NON_NAME_HEADINGS:
        return None
    return Person(username=username, profile_url=urljoin(base_url, href))


def _candidate_nodes(soup: BeautifulSoup) -> list[Tag]:
    for selector in ROSTER_SELECTORS:
        found = soup.select(selector)
        if found:
            logger.debug("Roster selector %r matched %d nodes", selector, len(found))
            return found

    links = soup.select(FALLBACK_SELECTOR)
    if len(links) > FALLBACK_MIN_LINKS:
        logger.info("No roster selector matched — using %d profile links", len(links))
        return links
    if links:
        logger.warning(
            "Only %d profile links found (threshold %d) — not treating page as a roster",
            len(links), FALLBACK_MIN_LINKS,
        )
    return []


def parse_roster_html(html: str, base_url: str = DRUPAL_ORG_BASE) -> list[Person]:
    """Extract a deduplicated member list from a roster page.

    Args:
        html:     Roster document.
        base_url: Base used to absolutize relative profile links.

    Returns:
        People in document order, deduplicated by lower-cased username.

    Raises:
        EmptyRosterError: No valid member could be extracted.
    """
    soup = BeautifulSoup(html, "html.parser")
    people: list[Person] = []
    seen: set[str] = set()

    for node in _candidate_nodes(soup):
        person = _person_from_node(node, base_url)
        if person is None or person.key in seen:
            continue
        seen.add(person.key)
        people.append(person)

    if not people:
        raise EmptyRosterError("No users found in roster HTML")
    return people


def has_next_page(html: str) -> bool:
    """True when the document carries a pager link to a following page."""
    return BeautifulSoup(html, "html.parser").select_one(NEXT_PAGE_SELECTOR) is not None


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

async def fetch_roster_document(
    client: httpx.AsyncClient,
    url: str,
    proxy_url: str = DEFAULT_CONFIG.proxy_url,
) -> str:
    """Fetch the roster HTML directly, falling back once to the proxy.

    Raises:
        FetchError: Both the direct and the proxied request failed.
    """
    try:
        return await get_text(client, url)
    except FetchError as exc:
        logger.warning("Direct roster fetch failed (%s) — retrying through proxy", exc.reason)

    proxied = f"{proxy_url}{quote(url, safe='')}"
    try:
        return await get_text(client, proxied)
    except FetchError as exc:
        raise FetchError(url, f"direct and proxied requests failed ({exc.reason})", exc.status_code) from exc


async def fetch_roster(
    client: httpx.AsyncClient,
    url: str = DEFAULT_CONFIG.roster_url,
    *,
    proxy_url: str = DEFAULT_CONFIG.proxy_url,
    store=None,
    follow_pager: bool = False,
    max_pages: int = 20,
) -> list[Person]:
    """Fetch and parse the organization roster.

    Args:
        client:       Session HTTP client.
        url:          Roster page URL.
        proxy_url:    Forwarding proxy prefix for the fallback request.
        store:        Optional CacheStore; the parsed roster is cached per URL.
        follow_pager: Also fetch ?page=N while a next-page link is present.
        max_pages:    Page ceiling when following the pager.

    Returns:
        Deduplicated list of Person.

    Raises:
        FetchError:       The first page could not be fetched at all.
        EmptyRosterError: The first page yielded no members.
    """
    key = cache_key("roster", {"url": url, "follow_pager": follow_pager})
    if store is not None:
        cached = store.get(key)
        if cached is not None:
            logger.info("Cache hit for roster %s", url)
            return [Person.from_dict(item) for item in cached]

    logger.info("Fetching roster from %s", url)
    html = await fetch_roster_document(client, url, proxy_url)
    people = parse_roster_html(html)

    if follow_pager:
        seen = {person.key for person in people}
        page = 1
        while page < max_pages and has_next_page(html):
            await polite_pause()
            page_url = str(httpx.URL(url).copy_set_param("page", str(page)))
            try:
                html = await fetch_roster_document(client, page_url, proxy_url)
                more = parse_roster_html(html)
            except (FetchError, EmptyRosterError) as exc:
                logger.warning(
                    "Roster page %d unavailable (%s) — keeping %d members", page, exc, len(people)
                )
                break
            for person in more:
                if person.key not in seen:
                    seen.add(person.key)
                    people.append(person)
            page += 1

    logger.info("Roster: %d members", len(people))
    if store is not None:
        store.set(key, [person.to_dict() for person in people])
    return people
