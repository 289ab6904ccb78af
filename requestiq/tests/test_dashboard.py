"""
Unit Tests: Dashboard Handler

Tests:
    - Auth challenge
    - Aggregate, ranking, series and percentile actions
    - Parameter validation and store failures
"""

import base64

import pytest

from requestiq.api.dashboard import DashboardHandler
from requestiq.api.router import Request
from requestiq.core.config import DashboardConfig
from requestiq.tests.conftest import HOUR, T0, make_event


def _get(query="", headers=None):
    return Request.from_raw("GET", f"http://localhost/requestiq{query}", headers=headers)


@pytest.fixture
def dashboard(engine, clock):
    return DashboardHandler(DashboardConfig(), engine, clock=clock)


class TestPage:

    @pytest.mark.asyncio
    async def test_html_without_action(self, dashboard):
        response = await dashboard.handle(_get())

        assert response.status == 200
        assert response.headers["content-type"].startswith("text/html")
        assert b"RequestIQ Dashboard" in response.body
        assert b'"/requestiq"' in response.body

    @pytest.mark.asyncio
    async def test_unknown_action_serves_page(self, dashboard):
        response = await dashboard.handle(_get("?action=nothing"))

        assert response.headers["content-type"].startswith("text/html")


class TestAuth:

    @pytest.fixture
    def protected(self, engine, clock):
        config = DashboardConfig(enable_auth=True, username="admin", password="pw")
        return DashboardHandler(config, engine, clock=clock)

    @pytest.mark.asyncio
    async def test_missing_credentials(self, protected):
        response = await protected.handle(_get("?action=metrics"))

        assert response.status == 401
        assert response.headers["www-authenticate"] == 'Basic realm="RequestIQ Dashboard"'

    @pytest.mark.asyncio
    async def test_valid_credentials(self, protected):
        token = base64.b64encode(b"admin:pw").decode()

        response = await protected.handle(_get("?action=metrics", {"Authorization": f"Basic {token}"}))

        assert response.status == 200


class TestActions:

    @pytest.mark.asyncio
    async def test_metrics(self, dashboard, engine):
        await engine.record_event(make_event(status_code=500))
        await engine.record_event(make_event(timestamp=T0 - 1))

        response = await dashboard.handle(_get("?action=metrics&hours=1"))

        assert response.status == 200
        data = response.json_body()
        assert data["totalRequests"] == 2
        assert data["errorRate"] == 0.5
        assert data["topPaths"] == [{"path": "/a", "count": 2}]
        assert data["available"] is True

    @pytest.mark.asyncio
    async def test_dashboard_data_defaults_to_24_hours(self, dashboard, engine):
        await engine.record_event(make_event(timestamp=T0 - 20 * HOUR))

        data = (await dashboard.handle(_get("?action=dashboard-data"))).json_body()

        assert data["totalRequests"] == 1
        assert data["bucketsExpected"] == 24 * 60 + 1

    @pytest.mark.asyncio
    async def test_long_windows_read_hours(self, dashboard):
        data = (await dashboard.handle(_get("?action=metrics&hours=48"))).json_body()

        assert data["bucketsExpected"] == 49

    @pytest.mark.asyncio
    async def test_explicit_granularity(self, dashboard):
        data = (await dashboard.handle(_get("?action=metrics&hours=48&granularity=day"))).json_body()

        assert data["bucketsExpected"] == 3

    @pytest.mark.asyncio
    async def test_top(self, dashboard, engine):
        await engine.record_event(make_event(country="DE"))

        response = await dashboard.handle(_get("?action=top&kind=countries&limit=5&hours=1"))

        assert response.json_body() == {"kind": "countries", "entries": [{"label": "DE", "count": 1}]}

    @pytest.mark.asyncio
    async def test_timeseries(self, dashboard, engine):
        await engine.record_event(make_event())

        data = (await dashboard.handle(_get("?action=timeseries&metric=requests&hours=1"))).json_body()

        assert data["metric"] == "requests"
        assert data["granularity"] == "minute"
        assert len(data["points"]) == 61
        assert data["points"][-1]["value"] == 1

    @pytest.mark.asyncio
    async def test_percentiles(self, dashboard, engine):
        await engine.record_event(make_event(duration=42))

        data = (await dashboard.handle(_get("?action=percentiles&hours=1"))).json_body()

        assert data == {"p50": 42.0, "p90": 42.0, "p95": 42.0, "p99": 42.0}


class TestErrors:

    @pytest.mark.parametrize("query", [
        "?action=metrics&hours=abc",
        "?action=metrics&hours=0",
        "?action=metrics&hours=-3",
        "?action=metrics&hours=inf",
        "?action=metrics&granularity=week",
        "?action=metrics&hours=10000&granularity=minute",
        "?action=top&limit=0",
        "?action=top&limit=x",
        "?action=top&kind=browsers",
        "?action=timeseries&metric=bytes",
    ])
    @pytest.mark.asyncio
    async def test_bad_parameters(self, dashboard, query):
        response = await dashboard.handle(_get(query))

        assert response.status == 400
        assert "error" in response.json_body()

    @pytest.mark.asyncio
    async def test_store_failure_is_unavailable(self, dashboard, backend):
        backend.inject_failure("execute")

        response = await dashboard.handle(_get("?action=metrics&hours=1"))

        assert response.status == 503
        data = response.json_body()
        assert data["available"] is False
        assert data["totalRequests"] == 0
        assert data["error"]

    @pytest.mark.asyncio
    async def test_store_failure_on_series(self, dashboard, backend):
        backend.inject_failure("execute")

        response = await dashboard.handle(_get("?action=timeseries&hours=1"))

        assert response.status == 503
        assert response.json_body()["available"] is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
