"""
drupal_dash/metrics/aggregate.py — Month-bucketed and per-entity rollups.

aggregate() is a pure function: no I/O, deterministic for identical inputs.

Algorithm:
    1. Zero-initialize every month label in all five series (comments,
       mrs opened / merged / closed, credits) and a PersonActivity for every
       roster username (lower-cased).
    2. Fold credits, comments and merge requests independently.

Month buckets only exist for the requested window. A record dated outside it
is skipped for the series but still counts toward person and project totals,
so series are bounded by the window while rollups are not.

The pandas helpers at the bottom turn an AggregatedData into frames for the
CLI summary and the figures.
"""

import logging
from datetime import date, datetime, timezone
from typing import Iterable, Optional, Sequence

import pandas as pd

from drupal_dash.models import (
    AggregatedData,
    CommentEvent,
    CreditRecord,
    MergeRequest,
    PersonActivity,
    ProjectActivity,
)

logger = logging.getLogger(__name__)

MONTH_FORMAT = "%Y-%m"


# ---------------------------------------------------------------------------
# Month window
# ---------------------------------------------------------------------------

def month_labels(months: int, today: Optional[date] = None) -> list[str]:
    """Labels ("YYYY-MM") for the last *months* calendar months, oldest first.

    The current month is included, so months=12 in March 2026 spans
    2025-04 .. 2026-03.
    """
    if months <= 0:
        return []
    today = today or datetime.now(tz=timezone.utc).date()
    end = pd.Period(pd.Timestamp(today), freq="M")
    return [period.strftime(MONTH_FORMAT) for period in pd.period_range(end=end, periods=months, freq="M")]


def window_start(labels: Sequence[str]) -> datetime:
    """First instant (UTC) of the oldest month in *labels*."""
    return datetime.strptime(labels[0], MONTH_FORMAT).replace(tzinfo=timezone.utc)


def month_of(when: datetime) -> str:
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return when.strftime(MONTH_FORMAT)


def _bump(series: dict[str, int], when: Optional[datetime], amount: int = 1) -> None:
    if when is None:
        return
    label = month_of(when)
    if label in series:
        series[label] += amount


def _project(data: AggregatedData, key: str) -> ProjectActivity:
    project = data.by_project.get(key)
    if project is None:
        project = data.by_project[key] = ProjectActivity(project_key=key)
    return project


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def aggregate(
    credits: Iterable[CreditRecord],
    comments: Iterable[CommentEvent],
    merge_requests: Iterable[MergeRequest],
    person_usernames: Iterable[str],
    month_labels: Sequence[str],
) -> AggregatedData:
    """Fold normalized records into an AggregatedData.

    Args:
        credits:          Contribution credits.
        comments:         Comment events; username / project_key are optional.
        merge_requests:   Merge requests.
        person_usernames: Roster usernames (any case).
        month_labels:     Window labels; exactly these keys appear in every series.

    Returns:
        AggregatedData with every window month present (0 where idle).
    """
    data = AggregatedData()
    for label in month_labels:
        data.comments_by_month[label] = 0
        data.credits_by_month[label] = 0
        for series in data.mrs_by_month.values():
            series[label] = 0

    for username in person_usernames:
        data.by_person[username.lower()] = PersonActivity()

    for credit in credits:
        _bump(data.credits_by_month, credit.date, credit.weight)

        person = data.by_person.setdefault(credit.username.lower(), PersonActivity())
        person.credits += credit.weight

        project = _project(data, credit.project_key)
        project.credit_count += credit.weight
        project.touch(credit.date)

    for comment in comments:
        _bump(data.comments_by_month, comment.created_at)

        if comment.username:
            person = data.by_person.setdefault(comment.username.lower(), PersonActivity())
            person.comments += 1

        if comment.project_key:
            project = _project(data, comment.project_key)
            project.comment_count += 1
            project.touch(comment.created_at)

    for mr in merge_requests:
        _bump(data.mrs_by_month["opened"], mr.created_at)
        _bump(data.mrs_by_month["merged"], mr.merged_at)
        _bump(data.mrs_by_month["closed"], mr.closed_at)

        author = (mr.author_username or "").lower()
        if author and author in data.by_person:
            data.by_person[author].mrs += 1

        if not mr.project_path:
            continue
        project = _project(data, mr.project_path)
        project.mr_count += 1
        for when in (mr.created_at, mr.merged_at, mr.closed_at):
            project.touch(when)

    logger.debug(
        "Aggregated %d people, %d projects over %d months",
        len(data.by_person), len(data.by_project), len(month_labels),
    )
    return data


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------

def monthly_frame(data: AggregatedData) -> pd.DataFrame:
    """One row per window month with comments, credits and the three MR series."""
    frame = pd.DataFrame(
        {
            "comments": data.comments_by_month,
            "credits": data.credits_by_month,
            "mrs_opened": data.mrs_by_month["opened"],
            "mrs_merged": data.mrs_by_month["merged"],
            "mrs_closed": data.mrs_by_month["closed"],
        }
    )
    frame.index.name = "month"
    return frame.fillna(0).astype(int).sort_index()


def person_frame(data: AggregatedData) -> pd.DataFrame:
    """Per-person rollup sorted by total activity, most active first."""
    rows = [
        {"username": name, "comments": act.comments, "mrs": act.mrs, "credits": act.credits}
        for name, act in data.by_person.items()
    ]
    frame = pd.DataFrame(rows, columns=["username", "comments", "mrs", "credits"])
    frame["total"] = frame[["comments", "mrs", "credits"]].sum(axis=1)
    return frame.sort_values(["total", "username"], ascending=[False, True]).reset_index(drop=True)


def project_frame(data: AggregatedData) -> pd.DataFrame:
    """Per-project rollup sorted by total activity, most active first."""
    rows = [
        {
            "project_key": proj.project_key,
            "comment_count": proj.comment_count,
            "mr_count": proj.mr_count,
            "credit_count": proj.credit_count,
            "last_activity": proj.last_activity,
        }
        for proj in data.by_project.values()
    ]
    columns = ["project_key", "comment_count", "mr_count", "credit_count", "last_activity"]
    frame = pd.DataFrame(rows, columns=columns)
    frame["total"] = frame[["comment_count", "mr_count", "credit_count"]].sum(axis=1)
    return frame.sort_values(["total", "project_key"], ascending=[False, True]).reset_index(drop=True)


def top_contributors(data: AggregatedData, n: int = 10, by: str = "credits") -> list[tuple[str, int]]:
    """The *n* people with the highest *by* count ("credits", "comments" or "mrs")."""
    ranked = sorted(
        ((name, getattr(act, by)) for name, act in data.by_person.items()),
        key=lambda item: (-item[1], item[0]),
    )
    return ranked[:n]
