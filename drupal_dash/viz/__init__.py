"""
drupal_dash.viz — Matplotlib figures from an AggregatedData.
"""
