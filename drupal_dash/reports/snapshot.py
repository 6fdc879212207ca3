"""
drupal_dash/reports/snapshot.py — Snapshot files for a prebuilt dashboard.

A snapshot is the output of one session frozen to disk so a static site can
render without touching any upstream:

    roster.json              list of people
    credits.json             list of credit records
    comments_by_month.json   {"YYYY-MM": count}
    mrs.json                 list of merge requests
    snapshot_timestamp.txt   ISO-8601 UTC time the session ran

Every file is written atomically (write .tmp, rename), so a reader never sees
a half-written file even while a scheduled job refreshes the directory.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from drupal_dash.models import CreditRecord, MergeRequest, Person

logger = logging.getLogger(__name__)

ROSTER_FILE = "roster.json"
CREDITS_FILE = "credits.json"
COMMENTS_FILE = "comments_by_month.json"
MRS_FILE = "mrs.json"
TIMESTAMP_FILE = "snapshot_timestamp.txt"


@dataclass
class Snapshot:
    """Contents of a snapshot directory."""

    people: list[Person] = field(default_factory=list)
    credits: list[CreditRecord] = field(default_factory=list)
    comments_by_month: dict[str, int] = field(default_factory=dict)
    merge_requests: list[MergeRequest] = field(default_factory=list)
    timestamp: Optional[datetime] = None


def _write_atomic(path: str, text: str) -> None:
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as fh:
        fh.write(text)
    os.replace(tmp, path)


def _write_json(path: str, data: Any) -> None:
    _write_atomic(path, json.dumps(data, indent=2, sort_keys=True) + "\n")


def write_snapshot(result, out_dir: str) -> dict[str, str]:
    """Write the snapshot files for a SessionResult.

    Args:
        result:  SessionResult from run_session().
        out_dir: Target directory (created if needed).

    Returns:
        Dict mapping filename -> absolute path of each file written.
    """
    os.makedirs(out_dir, exist_ok=True)
    payloads = {
        ROSTER_FILE: [person.to_dict() for person in result.people],
        CREDITS_FILE: [credit.to_dict() for credit in result.credits],
        COMMENTS_FILE: dict(result.aggregated.comments_by_month),
        MRS_FILE: [mr.to_dict() for mr in result.merge_requests],
    }

    paths: dict[str, str] = {}
    for name, payload in payloads.items():
        path = os.path.abspath(os.path.join(out_dir, name))
        _write_json(path, payload)
        paths[name] = path

    ts_path = os.path.abspath(os.path.join(out_dir, TIMESTAMP_FILE))
    _write_atomic(ts_path, result.generated_at.isoformat() + "\n")
    paths[TIMESTAMP_FILE] = ts_path

    logger.info(
        "Snapshot written to %s (%d people, %d credits, %d merge requests)",
        out_dir, len(result.people), len(result.credits), len(result.merge_requests),
    )
    return paths


def _read_json(path: str, default: Any) -> Any:
    if not os.path.exists(path):
        logger.warning("Snapshot file missing: %s", path)
        return default
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def load_snapshot(out_dir: str) -> Snapshot:
    """Read a snapshot directory written by write_snapshot().

    Missing files load as empty; malformed JSON raises json.JSONDecodeError.
    """
    snapshot = Snapshot(
        people=[Person.from_dict(item) for item in _read_json(os.path.join(out_dir, ROSTER_FILE), [])],
        credits=[CreditRecord.from_dict(item) for item in _read_json(os.path.join(out_dir, CREDITS_FILE), [])],
        comments_by_month={
            label: int(count)
            for label, count in _read_json(os.path.join(out_dir, COMMENTS_FILE), {}).items()
        },
        merge_requests=[MergeRequest.from_dict(item) for item in _read_json(os.path.join(out_dir, MRS_FILE), [])],
    )

    ts_path = os.path.join(out_dir, TIMESTAMP_FILE)
    if os.path.exists(ts_path):
        with open(ts_path, "r", encoding="utf-8") as fh:
            snapshot.timestamp = datetime.fromisoformat(fh.read().strip())
    return snapshot
