"""
drupal_dash — Contribution activity dashboard for a drupal.org organization.

Collects roster membership, contribution credits, issue comments and GitLab
merge requests for an organization's members and folds them into monthly
time-series plus per-person / per-project rollups.

Subpackages:
- drupal_dash.storage:   Two-tier expiring cache store.
- drupal_dash.ingestion: Source fetchers, roster parser and session orchestrator.
- drupal_dash.metrics:   Pure aggregation of normalized records.
- drupal_dash.reports:   Static snapshot export.
- drupal_dash.viz:       Chart figures of the aggregated view.
"""

__version__ = "0.1.0"
