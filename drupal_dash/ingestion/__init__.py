"""
drupal_dash.ingestion — Upstream fetchers and the session orchestrator.

Modules:
    http                 — AsyncClient factory and FetchError-raising GET helpers.
    fields               — Listing unwrapping and field alias tables.
    pagination           — Shared page loop, politeness delay, cache wrapper.
    roster               — Roster page fetch (direct, then proxy) and HTML parser.
    contribution_records — Contribution credits by organization.
    drupal_api           — uid resolution, comments and node details (api-d7).
    gitlab               — Merge request listing and detail enrichment.
    orchestrator         — Sequential session driver producing SessionResult.
"""
