"""
drupal_dash/config.py — All tunable parameters for the dashboard.

Upstream base URLs, the lookback window, cache policy and the optional GitLab
credential live here so that pointing the dashboard at another organization
or mirror is a single-file diff (or a handful of environment variables).
"""

import os
from dataclasses import dataclass, field, replace
from typing import Optional


@dataclass(frozen=True)
class DashConfig:
    """
    Immutable configuration for a dashboard fetch session.

    All fields have documented defaults. Override by constructing a new
    DashConfig, with dataclasses.replace(), or via config_from_env().
    """

    # ── Scope ─────────────────────────────────────────────────────────────────
    org: str = "CivicActions"
    # Organization name as used by the contribution records listing.

    months: int = 12
    # Lookback window in calendar months, current month included.

    # ── Upstream endpoints ────────────────────────────────────────────────────
    roster_url: str = "https://www.drupal.org/node/1121122/users"
    # HTML page listing the organization's people.

    drupal_api_base: str = "https://www.drupal.org/api-d7"
    # REST base for user.json, comment.json and node.json.

    contribution_api_base: str = (
        "https://new.drupal.org/contribution-records-by-organization-by-user"
    )
    # Credits listing. The path is inferred from the public site and its JSON
    # shape is unconfirmed; see ingestion/contribution_records.py.

    gitlab_api_base: str = "https://git.drupalcode.org/api/v4"

    proxy_url: str = "https://api.allorigins.win/raw?url="
    # Generic URL-forwarding proxy. The target URL is appended URL-encoded.

    # ── Cache ─────────────────────────────────────────────────────────────────
    cache_ttl_seconds: int = 6 * 60 * 60
    # Entries older than this are stale and purged on read.

    cache_dir: Optional[str] = ".cache/drupal_dash"
    # Durable tier directory. None keeps the cache in memory only.

    cache_max_bytes: int = 5 * 1024 * 1024
    # Durable tier quota. Writes past it are dropped with a warning.

    # ── Credentials ───────────────────────────────────────────────────────────
    gitlab_token: Optional[str] = field(default=None, repr=False)
    # Bearer credential for the MR detail endpoint. Never written to disk.

    # ── Merge requests ────────────────────────────────────────────────────────
    gitlab_projects: tuple[str, ...] = (
        "project/drupal",
        "project/webform",
        "project/pathauto",
    )
    # Project paths whose MR listings are fetched each session.

    merge_request_state: Optional[str] = None
    # Optional state filter for the listing ("opened", "merged", ...).

    merge_request_urls: tuple[str, ...] = ()
    # Extra MR web URLs to enrich through the detail endpoint.

    # ── Session behaviour ─────────────────────────────────────────────────────
    follow_roster_pager: bool = False
    # Walk ?page=N roster pages while a next-page link is present.

    fetch_comments: bool = True
    # Comments need one uid lookup plus a paginated listing per person.

    # ── Output paths ──────────────────────────────────────────────────────────
    snapshot_dir: str = "site/public/data"
    figures_dir: str = "figures"

    def __post_init__(self) -> None:
        if self.months < 1:
            raise ValueError(f"months must be at least 1, got {self.months}")


# Singleton default; import this everywhere instead of constructing anew.
DEFAULT_CONFIG = DashConfig()


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def config_from_env(base: DashConfig = DEFAULT_CONFIG, **overrides) -> DashConfig:
    """Build a DashConfig from DRUPAL_DASH_* environment variables.

    Recognised variables: DRUPAL_DASH_ORG, DRUPAL_DASH_MONTHS,
    DRUPAL_DASH_ROSTER_URL, DRUPAL_DASH_PROXY_URL, DRUPAL_DASH_CACHE_TTL,
    DRUPAL_DASH_CACHE_DIR, DRUPAL_DASH_GITLAB_PROJECTS (comma separated) and
    GITLAB_TOKEN. Keyword overrides win over the environment; None-valued
    overrides are ignored so argparse defaults can be passed straight through.

    Args:
        base:      Config supplying every value the environment does not set.
        overrides: Field values applied last.

    Returns:
        A new DashConfig.
    """
    env = os.environ
    values: dict = {}
    if env.get("DRUPAL_DASH_ORG"):
        values["org"] = env["DRUPAL_DASH_ORG"]
    if env.get("DRUPAL_DASH_MONTHS"):
        values["months"] = int(env["DRUPAL_DASH_MONTHS"])
    if env.get("DRUPAL_DASH_ROSTER_URL"):
        values["roster_url"] = env["DRUPAL_DASH_ROSTER_URL"]
    if env.get("DRUPAL_DASH_PROXY_URL"):
        values["proxy_url"] = env["DRUPAL_DASH_PROXY_URL"]
    if env.get("DRUPAL_DASH_CACHE_TTL"):
        values["cache_ttl_seconds"] = int(env["DRUPAL_DASH_CACHE_TTL"])
    if env.get("DRUPAL_DASH_CACHE_DIR"):
        values["cache_dir"] = env["DRUPAL_DASH_CACHE_DIR"]
    if env.get("DRUPAL_DASH_GITLAB_PROJECTS"):
        values["gitlab_projects"] = _split_list(env["DRUPAL_DASH_GITLAB_PROJECTS"])
    if env.get("GITLAB_TOKEN"):
        values["gitlab_token"] = env["GITLAB_TOKEN"]

    values.update({k: v for k, v in overrides.items() if v is not None})
    return replace(base, **values)
