"""
drupal_dash/ingestion/fields.py — Defensive parsing of inconsistently shaped payloads.

Upstream listings come back as a bare array or as an object wrapping the rows
under one of several keys, and rows rename their fields between API versions.
Both concerns are handled as data:

- unwrap_rows() tries the wrapper keys in a fixed priority order.
- Each record type declares a tuple of FieldSpec entries: for every logical
  field, candidate paths in priority order, a converter and a default. The
  first candidate whose value is present and converts cleanly wins.

Nothing in here raises on a malformed row; a field that cannot be read
degrades to its default.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

logger = logging.getLogger(__name__)

# Priority order for wrapped listings.
ROW_WRAPPER_KEYS: tuple[str, ...] = ("results", "list", "rows")

_MISSING = object()


def unwrap_rows(payload: Any) -> list[dict]:
    """Return the row list from a listing payload.

    A bare list is returned as-is; otherwise the first non-absent value among
    ROW_WRAPPER_KEYS is authoritative. Anything else yields an empty list.
    """
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict):
        rows = None
        for key in ROW_WRAPPER_KEYS:
            if payload.get(key) is not None:
                rows = payload[key]
                break
        if rows is None:
            return []
    else:
        return []

    if not isinstance(rows, list):
        logger.warning("Listing rows are %s, not a list — ignoring", type(rows).__name__)
        return []
    return [row for row in rows if isinstance(row, dict)]


def lookup(row: dict, path: str) -> Any:
    """Resolve a dotted *path* ("author.name") in nested dicts, or _MISSING."""
    value: Any = row
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------

def to_int(value: Any) -> int:
    """Integer from an int, a numeric string or an integral float ("2.0")."""
    if isinstance(value, bool):
        raise ValueError("boolean is not an id")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        number = float(text)
    if not number.is_integer():
        raise ValueError(f"not an integer: {value!r}")
    return int(number)


def to_str(value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ValueError("structured value where a string was expected")
    text = str(value).strip()
    if not text:
        raise ValueError("empty string")
    return text


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def parse_timestamp(value: Any) -> datetime:
    """Parse UNIX seconds (int or numeric string) or an ISO-8601 string to UTC.

    Values above 1e12 are taken to be milliseconds.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        text = str(value).strip()
        try:
            seconds = float(text)
        except ValueError:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    if seconds > 1e12:
        seconds /= 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"timestamp out of range: {value!r}") from exc


# ---------------------------------------------------------------------------
# Field specs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldSpec:
    """One logical field: candidate paths in priority order plus a fallback.

    Attributes:
        name:            Output key.
        candidates:      Dotted paths tried in order.
        convert:         Converter applied to the raw value; raising means "try next".
        default:         Fallback value.
        default_factory: Called with the call context instead of using
                         ``default`` when the fallback depends on the call.
    """

    name: str
    candidates: tuple[str, ...]
    convert: Callable[[Any], Any] = lambda value: value
    default: Any = None
    default_factory: Optional[Callable[[dict], Any]] = None


def normalize_row(row: dict, specs: Sequence[FieldSpec], context: Optional[dict] = None) -> dict:
    """Extract every logical field of *specs* from *row*.

    Args:
        row:     One raw upstream row.
        specs:   Field table for the target record type.
        context: Call-level values a default_factory may need (e.g. the
                 requested uid).

    Returns:
        Dict keyed by FieldSpec.name.
    """
    context = context or {}
    out: dict = {}
    for spec in specs:
        for path in spec.candidates:
            raw = lookup(row, path)
            if raw is _MISSING or raw is None:
                continue
            try:
                out[spec.name] = spec.convert(raw)
                break
            except (TypeError, ValueError, OverflowError):
                continue
        else:
            if spec.default_factory is not None:
                out[spec.name] = spec.default_factory(context)
            else:
                out[spec.name] = spec.default
    return out
