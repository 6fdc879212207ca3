"""
drupal_dash.reports — Static outputs of a fetch session.

Modules:
    snapshot — JSON snapshot files for a prebuilt dashboard.
"""
