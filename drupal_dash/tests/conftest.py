"""
drupal_dash/tests/conftest.py — Shared pytest fixtures for the drupal_dash test suite.

Every upstream is faked with httpx.MockTransport, so the suite is fully
offline. Async fetchers are driven with asyncio.run() from plain test
functions.

Fixtures:
    no_politeness_delay — autouse; zeroes the pause between page requests.
    fake_clock          — settable time source for TTL tests.
    store               — fresh memory-only CacheStore on the fake clock.
    file_store          — CacheStore with a FileCacheTier under tmp_path.
    recorder            — RequestRecorder for building mock clients.
"""

import json
from typing import Callable, Optional

import httpx
import pytest

from drupal_dash.ingestion import pagination
from drupal_dash.ingestion.http import build_client
from drupal_dash.storage.cache import CacheStore, FileCacheTier


# ── Pytest configuration hooks ────────────────────────────────────────────────

def pytest_configure(config):
    """Register the integration marker."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests that call real external APIs (deselected by default, "
        "pass --run-integration or -m integration to enable)",
    )


def pytest_addoption(parser):
    """Add --run-integration CLI flag to enable integration tests."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests that call real external APIs.",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration or -m integration is given."""
    markexpr = config.getoption("-m", default="")
    if "integration" in markexpr:
        return

    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(
        reason="Integration test -- pass --run-integration or -m integration to run"
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ── Mock upstreams ────────────────────────────────────────────────────────────

class RequestRecorder:
    """Routes requests to a handler and keeps every request it saw."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def client(self, handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        return build_client(transport=httpx.MockTransport(record))

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    @staticmethod
    def json(payload, status_code: int = 200) -> httpx.Response:
        return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"),
                              headers={"Content-Type": "application/json"})

    @staticmethod
    def html(html: str, status_code: int = 200) -> httpx.Response:
        return httpx.Response(status_code, text=html, headers={"Content-Type": "text/html"})

    @staticmethod
    def page(request: httpx.Request, default: int = 0) -> int:
        value: Optional[str] = request.url.params.get("page")
        return int(value) if value is not None else default


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def no_politeness_delay(monkeypatch):
    monkeypatch.setattr(pagination, "POLITENESS_DELAY", 0)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def store(fake_clock):
    return CacheStore(ttl_seconds=3600, clock=fake_clock)


@pytest.fixture
def file_store(tmp_path, fake_clock):
    return CacheStore(
        ttl_seconds=3600,
        durable=FileCacheTier(str(tmp_path / "cache")),
        clock=fake_clock,
    )


@pytest.fixture
def recorder():
    return RequestRecorder()


# ── HTML fixtures ─────────────────────────────────────────────────────────────

VIEWS_TABLE_ROSTER = """
<html><body>
<div class="view-content">
  <table>
    <thead><tr><th class="views-field-name"><a href="/sort?order=name">Name</a></th></tr></thead>
    <tbody>
      <tr><td class="views-field-name"><a href="/u/alice">Alice</a></td></tr>
      <tr><td class="views-field-name"><a href="/u/bob">bob</a></td></tr>
      <tr><td class="views-field-name"><a href="/u/ALICE">ALICE</a></td></tr>
      <tr><td class="views-field-name"><a href="/user/12345">Carol Smith</a></td></tr>
    </tbody>
  </table>
</div>
</body></html>
"""


def _profile_links_page(count: int) -> str:
    """An unstructured page carrying *count* profile links and nothing roster-shaped."""
    links = "\n".join(f'<li><a href="/u/member{i}">member{i}</a></li>' for i in range(count))
    return f"<html><body><div class='sidebar'><ul>{links}</ul></div></body></html>"


@pytest.fixture
def views_table_roster():
    return VIEWS_TABLE_ROSTER


@pytest.fixture
def profile_links_page():
    return _profile_links_page
