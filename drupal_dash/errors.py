"""
drupal_dash/errors.py — Error taxonomy for the fetch layer.

FetchError          A required request failed (network error or non-2xx).
EmptyRosterError    The roster document parsed but yielded zero members.
PartialResultError  A paginated source stopped early; carried inside a
                    FetchResult rather than raised.
"""

from typing import Optional


class DashError(Exception):
    """Base class for all drupal_dash errors."""


class FetchError(DashError):
    """A request failed at the transport or HTTP status level.

    Args:
        url:         The URL that was requested.
        reason:      Short human-readable cause ("HTTP 503", "invalid JSON", ...).
        status_code: HTTP status when a response was received.
    """

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None) -> None:
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{reason} fetching {url}")


class EmptyRosterError(DashError):
    """The roster parsed structurally but produced no members.

    An empty organization is far less likely than a markup change, so this is
    treated as a parse failure rather than a valid empty state.
    """


class PartialResultError(DashError):
    """A paginated fetch terminated on a failing page.

    Args:
        source:      Logical source name ("credits", "comments", ...).
        page:        Zero-based index of the page that failed.
        cause:       The underlying error.
        accumulated: Number of records retrieved before the failure.
    """

    def __init__(self, source: str, page: int, cause: Exception, accumulated: int) -> None:
        self.source = source
        self.page = page
        self.cause = cause
        self.accumulated = accumulated
        super().__init__(
            f"{source}: stopped at page {page} after {accumulated} records ({cause})"
        )
