"""
Shared test fixtures for scorefeed.

Provides:
- A controllable clock for deterministic TTL tests
- A fake scraping service (pytest-httpserver) for upstream/E2E tests
- Temporary config files
"""

import pytest
from pytest_httpserver import HTTPServer


class FakeClock:
    """Controllable clock for deterministic cache tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


SCHEDULE_DATA = {
    "League": [
        {
            "id": "m1",
            "matchNumber": 1,
            "dateTime": "2025-03-22T14:00:00Z",
            "teamA": "Kolkata Knight Riders",
            "teamB": "Royal Challengers Bengaluru",
            "venue": "Eden Gardens, Kolkata",
            "verdict": "RCB won by 7 wickets",
        },
        {
            "id": "m2",
            "matchNumber": 2,
            "dateTime": "2099-03-23T14:00:00Z",
            "teamA": "Mumbai Indians",
            "teamB": "Chennai Super Kings",
            "venue": "Wankhede Stadium, Mumbai",
            "verdict": "",
        },
    ]
}

POINTS_DATA = [
    {"position": 1, "team": "RCB", "played": 1, "wins": 1, "losses": 0, "points": 2},
    {"position": 2, "team": "KKR", "played": 1, "wins": 0, "losses": 1, "points": 0},
]


def scraper_ok(data):
    return {"success": True, "data": data, "timestamp": "2025-03-23T10:00:00Z"}


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture(scope="module")
def fake_scraper():
    """
    A real HTTP server that impersonates the scraping service.

    Tests configure responses with expect_request(...) after clear().
    """
    server = HTTPServer(host="127.0.0.1")
    server.expect_request("/api/schedule").respond_with_json(scraper_ok(SCHEDULE_DATA))
    server.expect_request("/api/points-table").respond_with_json(scraper_ok(POINTS_DATA))
    server.start()
    yield server
    server.clear()
    if server.is_running():
        server.stop()


def write_config(tmp_path, upstream_url: str, extra: str = "") -> str:
    """Write a config.yaml pointing at upstream_url and return its path."""
    content = f"""\
upstream_base_url: "{upstream_url}"
fetch_timeout: 2
max_retries: 0
retry_delay: 0
max_keys: 10
refresh_interval: 0
{extra}
datasets:
  - name: "schedule"
    path: "/api/schedule"
    ttl_seconds: 2
    category: "schedule"
    view: "schedule"
  - name: "points-table"
    path: "/api/points-table"
    ttl_seconds: 2
    category: "standings"
    view: "points"
  - name: "matches"
    source: "schedule"
    view: "matches"
    category: "live"
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(content)
    return str(config_path)
