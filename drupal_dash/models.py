"""
drupal_dash/models.py — Normalized record types shared by every layer.

Records are frozen dataclasses produced by the fetchers. Each has a
to_dict()/from_dict() pair so it can pass through the durable cache tier and
the snapshot files; datetimes are stored as ISO-8601 UTC strings.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Source records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Person:
    """A roster member. Identity is the lower-cased username."""

    username: str
    profile_url: str
    uid: Optional[int] = None

    @property
    def key(self) -> str:
        return self.username.lower()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Person":
        return cls(
            username=data["username"],
            profile_url=data.get("profile_url", ""),
            uid=data.get("uid"),
        )


@dataclass(frozen=True)
class CreditRecord:
    """One contribution credit attributed to a person and a project."""

    username: str
    project_key: str
    date: datetime
    weight: int = 1
    is_security_advisory: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["date"] = _iso(self.date)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CreditRecord":
        return cls(
            username=data["username"],
            project_key=data["project_key"],
            date=_from_iso(data["date"]),
            weight=int(data.get("weight", 1)),
            is_security_advisory=bool(data.get("is_security_advisory", False)),
        )


@dataclass(frozen=True)
class CommentEvent:
    """One issue comment by a roster member.

    project_key is only known after the node lookup; username is filled in
    from the uid -> person map when the author is on the roster.
    """

    comment_id: int
    node_id: int
    author_uid: int
    created_at: datetime
    project_key: Optional[str] = None
    username: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CommentEvent":
        return cls(
            comment_id=int(data["comment_id"]),
            node_id=int(data["node_id"]),
            author_uid=int(data["author_uid"]),
            created_at=_from_iso(data["created_at"]),
            project_key=data.get("project_key"),
            username=data.get("username"),
        )


@dataclass(frozen=True)
class IssueNode:
    """Project/type metadata for an upstream content node."""

    nid: int
    type: str
    title: str = ""
    project_key: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "IssueNode":
        return cls(
            nid=int(data["nid"]),
            type=data.get("type", ""),
            title=data.get("title", ""),
            project_key=data.get("project_key"),
        )


class MergeRequestState(str, Enum):
    OPENED = "opened"
    MERGED = "merged"
    CLOSED = "closed"
    LOCKED = "locked"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "MergeRequestState":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class MergeRequest:
    """A GitLab merge request, possibly only partially known.

    Placeholders built from a URL alone carry state UNKNOWN and no timestamps.
    """

    url: str
    project_path: str = ""
    iid: int = 0
    state: MergeRequestState = MergeRequestState.UNKNOWN
    created_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    author_username: Optional[str] = None
    web_url: str = ""

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "project_path": self.project_path,
            "iid": self.iid,
            "state": self.state.value,
            "created_at": _iso(self.created_at),
            "merged_at": _iso(self.merged_at),
            "closed_at": _iso(self.closed_at),
            "author_username": self.author_username,
            "web_url": self.web_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MergeRequest":
        return cls(
            url=data.get("url", ""),
            project_path=data.get("project_path", ""),
            iid=int(data.get("iid") or 0),
            state=MergeRequestState.parse(data.get("state")),
            created_at=_from_iso(data.get("created_at")),
            merged_at=_from_iso(data.get("merged_at")),
            closed_at=_from_iso(data.get("closed_at")),
            author_username=data.get("author_username"),
            web_url=data.get("web_url", ""),
        )


# ---------------------------------------------------------------------------
# Aggregated view
# ---------------------------------------------------------------------------

@dataclass
class PersonActivity:
    comments: int = 0
    mrs: int = 0
    credits: int = 0


@dataclass
class ProjectActivity:
    project_key: str
    comment_count: int = 0
    mr_count: int = 0
    credit_count: int = 0
    last_activity: Optional[datetime] = None

    def touch(self, when: Optional[datetime]) -> None:
        """Advance last_activity to *when* if it is later."""
        if when is not None and (self.last_activity is None or when > self.last_activity):
            self.last_activity = when


@dataclass
class AggregatedData:
    """Month-bucketed series plus per-person and per-project rollups.

    Month maps are keyed by "YYYY-MM" labels; mrs_by_month holds three such
    maps under "opened", "merged" and "closed".
    """

    comments_by_month: dict[str, int] = field(default_factory=dict)
    mrs_by_month: dict[str, dict[str, int]] = field(
        default_factory=lambda: {"opened": {}, "merged": {}, "closed": {}}
    )
    credits_by_month: dict[str, int] = field(default_factory=dict)
    by_person: dict[str, PersonActivity] = field(default_factory=dict)
    by_project: dict[str, ProjectActivity] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "comments_by_month": dict(self.comments_by_month),
            "mrs_by_month": {k: dict(v) for k, v in self.mrs_by_month.items()},
            "credits_by_month": dict(self.credits_by_month),
            "by_person": {k: asdict(v) for k, v in self.by_person.items()},
            "by_project": {
                k: {**asdict(v), "last_activity": _iso(v.last_activity)}
                for k, v in self.by_project.items()
            },
        }


# ---------------------------------------------------------------------------
# Fetch outcome
# ---------------------------------------------------------------------------

class FetchStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class FetchResult:
    """Outcome of one paginated source fetch.

    Attributes:
        records:    Records accumulated before pagination ended.
        status:     COMPLETE, PARTIAL (some pages then a failure) or FAILED.
        error:      PartialResultError describing the failing page, if any.
        pages:      Number of pages successfully consumed.
        truncated:  True when the page ceiling ended pagination.
        from_cache: True when served from the cache store.
    """

    records: list = field(default_factory=list)
    status: FetchStatus = FetchStatus.COMPLETE
    error: Optional[Exception] = None
    pages: int = 0
    truncated: bool = False
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.COMPLETE
