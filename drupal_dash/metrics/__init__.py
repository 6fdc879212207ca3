"""
drupal_dash.metrics — Aggregation of normalized records.

Modules:
    aggregate — month window, aggregate() and pandas rollup frames.

Everything here is pure: no network, no cache, no files.
"""
