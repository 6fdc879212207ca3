"""
drupal_dash/viz/figures.py — Static figures for an organization's activity.

Generates the dashboard charts from an AggregatedData as PNG files:

    fig1_monthly_activity.png   comments and credits per month (lines)
    fig2_merge_requests.png     MRs opened / merged / closed per month (grouped bars)
    fig3_top_contributors.png   people ranked by total activity (horizontal bars)
    fig4_top_projects.png       projects ranked by total activity (horizontal bars)

Usage:
    from drupal_dash.viz.figures import generate_all_figures
    paths = generate_all_figures(result.aggregated, output_dir="figures")
"""

import logging
import os
from typing import Optional

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402

from drupal_dash.metrics.aggregate import monthly_frame, person_frame, project_frame  # noqa: E402
from drupal_dash.models import AggregatedData  # noqa: E402

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared colour palette
# ---------------------------------------------------------------------------
C_COMMENTS = "#2196A6"  # teal
C_CREDITS = "#F2B134"   # amber
C_OPENED = "#2196A6"
C_MERGED = "#4CAF50"    # green
C_CLOSED = "#E05E3A"    # orange-red
C_DARK = "#1A2B3C"      # near-black
C_LIGHT = "#E8EFF5"     # background tint

STYLE = {
    "figure.facecolor": "white",
    "axes.facecolor": C_LIGHT,
    "axes.edgecolor": C_DARK,
    "axes.labelcolor": C_DARK,
    "xtick.color": C_DARK,
    "ytick.color": C_DARK,
    "text.color": C_DARK,
    "grid.color": "white",
    "grid.linewidth": 1.0,
    "axes.spines.top": False,
    "axes.spines.right": False,
    "font.family": "DejaVu Sans",
}

TOP_N = 15


def _save(fig, output_dir: str, name: str) -> str:
    fig.tight_layout()
    path = os.path.join(output_dir, name)
    fig.savefig(path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return os.path.abspath(path)


def generate_all_figures(aggregated: AggregatedData, output_dir: str) -> dict[str, str]:
    """
    Generate every figure that has data behind it.

    Args:
        aggregated: Output of aggregate().
        output_dir: Directory to save PNG files into (created if needed).

    Returns:
        Dict mapping filename -> absolute path for each generated figure.
    """
    os.makedirs(output_dir, exist_ok=True)
    paths: dict[str, str] = {}

    with plt.rc_context(STYLE):
        for builder in (_fig1_monthly_activity, _fig2_merge_requests,
                        _fig3_top_contributors, _fig4_top_projects):
            p = builder(aggregated, output_dir)
            if p:
                paths[os.path.basename(p)] = p

    logger.info("Generated %d figures in %s", len(paths), output_dir)
    return paths


# ---------------------------------------------------------------------------
# Figure 1: Monthly comments and credits
# ---------------------------------------------------------------------------
def _fig1_monthly_activity(aggregated: AggregatedData, output_dir: str) -> Optional[str]:
    frame = monthly_frame(aggregated)
    if frame.empty:
        return None

    fig, ax = plt.subplots(figsize=(11, 5))
    x = np.arange(len(frame))
    ax.plot(x, frame["comments"], marker="o", color=C_COMMENTS, linewidth=2, label="Comments")
    ax.plot(x, frame["credits"], marker="s", color=C_CREDITS, linewidth=2, label="Credits")
    ax.set_xticks(x)
    ax.set_xticklabels(frame.index, rotation=45, ha="right", fontsize=8)
    ax.set_ylabel("Count", fontsize=11)
    ax.set_title("Monthly Activity", fontsize=13, fontweight="bold", pad=12)
    ax.yaxis.grid(True, zorder=0)
    ax.legend(fontsize=9, loc="upper left")
    return _save(fig, output_dir, "fig1_monthly_activity.png")


# ---------------------------------------------------------------------------
# Figure 2: Merge requests opened / merged / closed
# ---------------------------------------------------------------------------
def _fig2_merge_requests(aggregated: AggregatedData, output_dir: str) -> Optional[str]:
    frame = monthly_frame(aggregated)
    if frame.empty:
        return None

    fig, ax = plt.subplots(figsize=(11, 5))
    x = np.arange(len(frame))
    width = 0.27
    for offset, column, color, label in (
        (-width, "mrs_opened", C_OPENED, "Opened"),
        (0.0, "mrs_merged", C_MERGED, "Merged"),
        (width, "mrs_closed", C_CLOSED, "Closed"),
    ):
        ax.bar(x + offset, frame[column], width=width, color=color,
               edgecolor="white", linewidth=0.6, label=label, zorder=3)
    ax.set_xticks(x)
    ax.set_xticklabels(frame.index, rotation=45, ha="right", fontsize=8)
    ax.set_ylabel("Merge requests", fontsize=11)
    ax.set_title("Merge Requests per Month", fontsize=13, fontweight="bold", pad=12)
    ax.yaxis.grid(True, zorder=0)
    ax.legend(fontsize=9, loc="upper left")
    return _save(fig, output_dir, "fig2_merge_requests.png")


# ---------------------------------------------------------------------------
# Figure 3: Top contributors (stacked horizontal bars)
# ---------------------------------------------------------------------------
def _fig3_top_contributors(aggregated: AggregatedData, output_dir: str) -> Optional[str]:
    frame = person_frame(aggregated)
    frame = frame[frame["total"] > 0].head(TOP_N)
    if frame.empty:
        return None

    fig, ax = plt.subplots(figsize=(10, max(4, len(frame) * 0.4)))
    y = np.arange(len(frame))
    left = np.zeros(len(frame))
    for column, color, label in (
        ("credits", C_CREDITS, "Credits"),
        ("comments", C_COMMENTS, "Comments"),
        ("mrs", C_MERGED, "Merge requests"),
    ):
        values = frame[column].to_numpy()
        ax.barh(y, values, left=left, color=color, edgecolor="white",
                linewidth=0.6, height=0.75, label=label)
        left += values
    ax.set_yticks(y)
    ax.set_yticklabels(frame["username"], fontsize=8)
    ax.invert_yaxis()
    ax.set_xlabel("Activity", fontsize=11)
    ax.set_title("Top Contributors", fontsize=13, fontweight="bold", pad=12)
    ax.xaxis.grid(True, zorder=0)
    ax.legend(fontsize=9, loc="lower right")
    return _save(fig, output_dir, "fig3_top_contributors.png")


# ---------------------------------------------------------------------------
# Figure 4: Top projects
# ---------------------------------------------------------------------------
def _fig4_top_projects(aggregated: AggregatedData, output_dir: str) -> Optional[str]:
    frame = project_frame(aggregated)
    frame = frame[frame["total"] > 0].head(TOP_N)
    if frame.empty:
        return None

    fig, ax = plt.subplots(figsize=(10, max(4, len(frame) * 0.4)))
    y = np.arange(len(frame))
    ax.barh(y, frame["total"], color=C_COMMENTS, edgecolor="white", linewidth=0.6, height=0.75)
    ax.set_yticks(y)
    ax.set_yticklabels(frame["project_key"], fontsize=8)
    ax.invert_yaxis()
    ax.set_xlabel("Comments + merge requests + credits", fontsize=11)
    ax.set_title("Top Projects", fontsize=13, fontweight="bold", pad=12)
    ax.xaxis.grid(True, zorder=0)
    return _save(fig, output_dir, "fig4_top_projects.png")
