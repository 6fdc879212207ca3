"""
drupal_dash/cli.py — Command-line interface for the contribution dashboard.

Provides a single entry point that:
  1. Loads DRUPAL_DASH_* settings and GITLAB_TOKEN from a .env file
  2. Runs a fetch session (roster, credits, comments, merge requests)
  3. Prints a summary and optionally writes figures and a snapshot

Usage:
    python -m drupal_dash run             # fetch + summary + figures
    python -m drupal_dash snapshot        # fetch + snapshot files for a static site
    python -m drupal_dash status          # cache and snapshot state
    python -m drupal_dash clear-cache     # drop every cached entry

All commands read .env from the working directory (or any parent, or the
path given by --env-file) before the environment is consulted.
"""

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional


# ── .env loader ──────────────────────────────────────────────────────────────

def _find_dotenv(start: Optional[Path] = None) -> Optional[Path]:
    """Nearest .env in *start* (default: working directory) or a parent."""
    start = start or Path.cwd()
    return next(
        (d / ".env" for d in (start, *start.parents) if (d / ".env").is_file()),
        None,
    )


def _parse_dotenv_line(line: str) -> Optional[tuple[str, str]]:
    """(key, value) for one .env line, or None for blanks and comments.

    Accepts an optional ``export`` prefix. Quoted values are taken verbatim;
    unquoted values lose a trailing `` # comment``.
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    key, sep, value = line.partition("=")
    key, value = key.strip(), value.strip()
    if not sep or not key:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return key, value[1:-1]
    return key, value.split(" #", 1)[0].rstrip()


def _load_dotenv(env_file: Optional[str] = None) -> dict[str, str]:
    """Copy settings from a .env file into os.environ without overriding.

    Args:
        env_file: Explicit path; otherwise the nearest .env is used.

    Returns:
        The key/value pairs that were newly set.
    """
    path = Path(env_file) if env_file else _find_dotenv()
    if path is None or not path.is_file():
        return {}

    loaded: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        pair = _parse_dotenv_line(raw_line)
        if pair is None or pair[0] in os.environ:
            continue
        os.environ[pair[0]] = loaded[pair[0]] = pair[1]
    return loaded


# ── Logging setup ─────────────────────────────────────────────────────────────

def _setup_logging(level: str = "INFO") -> None:
    """Configure root logger with timestamps."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    fmt = "%(asctime)s  %(levelname)-8s  %(name)s — %(message)s"
    datefmt = "%H:%M:%S"
    logging.basicConfig(level=numeric, format=fmt, datefmt=datefmt, stream=sys.stderr)
    # Per-request lines from the HTTP stack drown out stage progress
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


logger = logging.getLogger("drupal_dash.cli")


def _prepare(args: argparse.Namespace, level: Optional[str] = None):
    """Load .env, configure logging and build the session config from *args*."""
    _load_dotenv(args.env_file)
    _setup_logging(level or args.log_level)

    from drupal_dash.config import config_from_env

    projects = getattr(args, "project", None)
    mr_urls = getattr(args, "mr_url", None)
    return config_from_env(
        org=getattr(args, "org", None),
        months=getattr(args, "months", None),
        cache_dir=args.cache_dir,
        gitlab_token=args.token,
        gitlab_projects=tuple(projects) if projects else None,
        merge_request_urls=tuple(mr_urls) if mr_urls else None,
        follow_roster_pager=True if getattr(args, "follow_pager", False) else None,
        fetch_comments=False if getattr(args, "no_comments", False) else None,
    )


def _run(config):
    from drupal_dash.ingestion.orchestrator import run_session_sync

    logger.info("=" * 60)
    logger.info("Drupal contribution dashboard — fetch session")
    logger.info("  Organization : %s", config.org)
    logger.info("  Months       : %d", config.months)
    logger.info("  GitLab token : %s", "present" if config.gitlab_token else "ABSENT")
    logger.info("  Cache dir    : %s", config.cache_dir or "(memory only)")
    logger.info("=" * 60)
    return run_session_sync(config)


def _print_errors(result) -> None:
    if result.error:
        print(f"\n  ERROR: {result.error}")
    if result.errors:
        print("\n  Degraded sources:")
        for err in result.errors[:10]:
            print(f"    [{err.get('source', '?')}] {err.get('error', '?')}")
        if len(result.errors) > 10:
            print(f"    ... and {len(result.errors) - 10} more")


# ── Subcommand: run ──────────────────────────────────────────────────────────

def cmd_run(args: argparse.Namespace) -> int:
    """Fetch session → summary table → figures."""
    config = _prepare(args)

    from drupal_dash.metrics.aggregate import person_frame, project_frame

    t0 = time.monotonic()
    result = _run(config)
    elapsed = time.monotonic() - t0

    agg = result.aggregated
    print()
    print("=" * 60)
    print(f"  DRUPAL DASH — {config.org.upper()}  [{result.status.value}]")
    print("=" * 60)
    print(f"  Elapsed          : {elapsed:.0f}s")
    if result.month_labels:
        print(f"  Window           : {result.month_labels[0]} .. {result.month_labels[-1]}")
    print(f"  People           : {len(result.people)}")
    print(f"  Credits          : {sum(agg.credits_by_month.values())}")
    print(f"  Comments         : {sum(agg.comments_by_month.values())}")
    print(f"  MRs opened       : {sum(agg.mrs_by_month['opened'].values())}")
    print(f"  MRs merged       : {sum(agg.mrs_by_month['merged'].values())}")
    print(f"  Projects         : {len(agg.by_project)}")

    if agg.by_person:
        print("\n  Top contributors:")
        print(person_frame(agg).head(args.top).to_string(index=False))
    if agg.by_project:
        print("\n  Top projects:")
        frame = project_frame(agg).drop(columns=["last_activity"])
        print(frame.head(args.top).to_string(index=False))

    _print_errors(result)

    if result.status.value != "failed" and not args.no_figures:
        from drupal_dash.viz.figures import generate_all_figures

        figures_dir = args.figures_dir or config.figures_dir
        paths = generate_all_figures(agg, figures_dir)
        print(f"\n  Figures ({len(paths)})      : {os.path.abspath(figures_dir)}/")
    print("=" * 60)

    return 1 if result.status.value == "failed" else 0


# ── Subcommand: snapshot ─────────────────────────────────────────────────────

def cmd_snapshot(args: argparse.Namespace) -> int:
    """Fetch session → snapshot files for a prebuilt dashboard."""
    config = _prepare(args)

    from drupal_dash.reports.snapshot import write_snapshot

    result = _run(config)
    if result.status.value == "failed":
        _print_errors(result)
        return 1

    out_dir = args.out_dir or config.snapshot_dir
    paths = write_snapshot(result, out_dir)
    print()
    print("=" * 60)
    print(f"  SNAPSHOT WRITTEN  [{result.status.value}]")
    print("=" * 60)
    for name in sorted(paths):
        print(f"    + {name}")
    print(f"  Directory: {os.path.abspath(out_dir)}")
    _print_errors(result)
    print("=" * 60)
    return 0


# ── Subcommand: status ───────────────────────────────────────────────────────

def cmd_status(args: argparse.Namespace) -> int:
    """Show cache usage, credential presence and the latest snapshot."""
    config = _prepare(args, level="WARNING")

    from drupal_dash.reports.snapshot import TIMESTAMP_FILE
    from drupal_dash.storage.cache import CacheStore

    stats = CacheStore.from_config(config).stats()

    print("\nDrupal Dash — Status Report")
    print("=" * 40)
    print(f"  Organization  : {config.org}")
    print(f"  GITLAB_TOKEN  : {'✓ present' if config.gitlab_token else '✗ not set'}")
    print(f"  Cache dir     : {config.cache_dir or '(memory only)'}")
    print(f"  Cache entries : {stats['durable_entries']} ({stats['durable_bytes']} bytes)")
    print(f"  Cache TTL     : {stats['ttl_seconds'] / 3600:.1f} h")

    ts_path = Path(config.snapshot_dir) / TIMESTAMP_FILE
    if ts_path.is_file():
        print(f"  Snapshot      : {ts_path.read_text(encoding='utf-8').strip()}")
    else:
        print(f"  Snapshot      : (none in {config.snapshot_dir})")
    print()
    return 0


# ── Subcommand: clear-cache ──────────────────────────────────────────────────

def cmd_clear_cache(args: argparse.Namespace) -> int:
    """Remove every namespaced entry from the durable cache tier."""
    config = _prepare(args)

    from drupal_dash.storage.cache import CacheStore

    store = CacheStore.from_config(config)
    before = store.stats()["durable_entries"]
    store.clear()
    print(f"Removed {before} cached entries from {config.cache_dir or '(memory only)'}")
    return 0


# ── Argument parser ───────────────────────────────────────────────────────────

def _positive_int(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drupal-dash",
        description=(
            "Drupal contribution dashboard — organization activity from drupal.org\n"
            "and git.drupalcode.org. Reads GITLAB_TOKEN from .env automatically."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fetch, summarize and draw figures for the default organization
  python -m drupal_dash run

  # Another organization over six months, with MR detail enrichment
  python -m drupal_dash run --org Lullabot --months 6 \\
      --mr-url https://git.drupalcode.org/project/webform/-/merge_requests/42

  # Refresh the static site's data files
  python -m drupal_dash snapshot --out-dir site/public/data
        """,
    )

    # Global flags
    parser.add_argument(
        "--env-file",
        default=None,
        metavar="PATH",
        help="Path to .env file (default: auto-detect .env from the working directory up)",
    )
    parser.add_argument(
        "--token",
        default=None,
        metavar="GITLAB_TOKEN",
        help="GitLab access token for MR details (overrides .env and environment)",
    )
    parser.add_argument(
        "--cache-dir",
        default=None,
        metavar="PATH",
        help="Durable cache directory (default: .cache/drupal_dash)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    def add_session_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("--org", default=None, metavar="NAME",
                       help="Organization name (default: CivicActions)")
        p.add_argument("--months", type=_positive_int, default=None, metavar="N",
                       help="Lookback window in calendar months (default: 12)")
        p.add_argument("--project", action="append", default=None, metavar="PATH",
                       help="GitLab project path for MR listings; repeatable")
        p.add_argument("--mr-url", action="append", default=None, metavar="URL",
                       help="Merge request web URL to enrich; repeatable")
        p.add_argument("--follow-pager", action="store_true",
                       help="Also fetch later roster pages")
        p.add_argument("--no-comments", action="store_true",
                       help="Skip per-person comment lookups")

    # run
    p_run = subparsers.add_parser("run", help="Fetch session, summary and figures")
    add_session_flags(p_run)
    p_run.add_argument("--top", type=int, default=10, metavar="N",
                       help="Rows in the summary tables (default: 10)")
    p_run.add_argument("--figures-dir", default=None, metavar="PATH",
                       help="Directory for figure outputs (default: figures/)")
    p_run.add_argument("--no-figures", action="store_true", help="Skip figure generation")
    p_run.set_defaults(func=cmd_run)

    # snapshot
    p_snap = subparsers.add_parser("snapshot", help="Fetch session and write snapshot files")
    add_session_flags(p_snap)
    p_snap.add_argument("--out-dir", default=None, metavar="PATH",
                        help="Snapshot directory (default: site/public/data)")
    p_snap.set_defaults(func=cmd_snapshot)

    # status
    p_status = subparsers.add_parser("status", help="Show cache and snapshot state")
    p_status.set_defaults(func=cmd_status)

    # clear-cache
    p_clear = subparsers.add_parser("clear-cache", help="Remove all cached entries")
    p_clear.set_defaults(func=cmd_clear_cache)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
