"""
Tests for the event ingestion route.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from clickguard.adapters.memory_db import InMemoryEventRepo, InMemorySessionRepo
from clickguard.api import deps
from clickguard.api.routes import events as events_routes
from clickguard.components.ingest import IngestionPipeline, build_ingestion_pipeline
from clickguard.components.ratelimit import InMemoryRateLimitRepo
from clickguard.rules.models import RateLimitWindow, Rules

SAFARI_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15"
)

# --- Test Setup ---


@pytest.fixture
def event_repo() -> InMemoryEventRepo:
    return InMemoryEventRepo()


@pytest.fixture
def session_repo() -> InMemorySessionRepo:
    return InMemorySessionRepo()


@pytest.fixture
def pipeline(clock, event_repo: InMemoryEventRepo) -> IngestionPipeline:
    rules = Rules()
    rules.rate_limits.ip = RateLimitWindow(max_requests=2, window_seconds=60)
    rules.rate_limits.session = RateLimitWindow(max_requests=1, window_seconds=60)
    return build_ingestion_pipeline(
        rules,
        rate_limit_repo=InMemoryRateLimitRepo(),
        history=event_repo,
        time_port=clock,
    )


@pytest.fixture
def app(
    pipeline: IngestionPipeline,
    event_repo: InMemoryEventRepo,
    session_repo: InMemorySessionRepo,
) -> FastAPI:
    """Test FastAPI app with the ingestion route."""
    app = FastAPI()
    app.include_router(events_routes.router, prefix="/api/events")

    app.dependency_overrides[deps.get_ingestion_pipeline] = lambda: pipeline
    app.dependency_overrides[deps.get_event_repo] = lambda: event_repo
    app.dependency_overrides[deps.get_session_repo] = lambda: session_repo

    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def body(**overrides: object) -> dict[str, object]:
    data: dict[str, object] = {
        "project_id": "shop",
        "session_id": "s1",
        "event_type": "pageview",
        "user_agent": SAFARI_UA,
        "referrer": "https://news.ycombinator.com/item?id=1",
    }
    data.update(overrides)
    return data


# --- Tests ---


class TestIngestEvent:
    def test_returns_enriched_event(self, client: TestClient, event_repo: InMemoryEventRepo) -> None:
        """Edge headers feed the client IP and geo of the stored event."""
        response = client.post(
            "/api/events",
            json=body(),
            headers={
                "CF-Connecting-IP": "203.0.113.9",
                "CF-IPCountry": "NL",
                "CF-IPCity": "Amsterdam",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["event"]["ip_address"] == "203.0.113.9"
        assert data["event"]["country_code"] == "NL"
        assert data["event"]["city"] == "Amsterdam"
        assert data["event"]["referrer_type"] == "referral"
        assert data["event"]["device_type"] == "desktop"
        assert data["geo_source"] == "hints"
        assert 0 <= data["fraud"]["score"] <= 100
        assert "is_bot" in data["bot"]

        assert event_repo.count() == 1

    def test_session_is_recorded(self, client: TestClient, session_repo: InMemorySessionRepo) -> None:
        client.post("/api/events", json=body(), headers={"CF-Connecting-IP": "203.0.113.9"})
        session = session_repo.get("s1")
        assert session is not None
        assert session.events_count == 1

    def test_missing_project_is_400(self, client: TestClient, event_repo: InMemoryEventRepo) -> None:
        response = client.post("/api/events", json=body(project_id=""))

        assert response.status_code == 400
        errors = response.json()["detail"]["errors"]
        assert errors[0]["field"] == "project_id"
        assert errors[0]["code"] == "required"
        assert event_repo.count() == 0

    def test_bad_event_type_is_400(self, client: TestClient) -> None:
        response = client.post("/api/events", json=body(event_type="purchase"))
        assert response.status_code == 400
        assert response.json()["detail"]["errors"][0]["code"] == "invalid_event_type"

    def test_non_string_user_agent_is_400(
        self, client: TestClient, event_repo: InMemoryEventRepo
    ) -> None:
        response = client.post("/api/events", json=body(user_agent=12345))

        assert response.status_code == 400
        error = response.json()["detail"]["errors"][0]
        assert error["code"] == "invalid_type"
        assert error["field"] == "user_agent"
        assert event_repo.count() == 0

    def test_tor_exit_country_feeds_fraud_scoring(self, client: TestClient) -> None:
        response = client.post(
            "/api/events",
            json=body(),
            headers={"CF-Connecting-IP": "203.0.113.9", "CF-IPCountry": "T1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["event"]["country_code"] == "XX"
        assert "ip.tor" in data["fraud"]["triggered_rules"]

    def test_ip_limit_is_429(self, client: TestClient, event_repo: InMemoryEventRepo) -> None:
        """Only the ip scope rejects the request outright."""
        headers = {"CF-Connecting-IP": "203.0.113.9"}
        codes = [
            client.post("/api/events", json=body(session_id=f"s{i}"), headers=headers).status_code
            for i in range(3)
        ]

        assert codes == [200, 200, 429]
        assert event_repo.count() == 2

    def test_session_limit_only_flags(self, client: TestClient, event_repo: InMemoryEventRepo) -> None:
        first = client.post("/api/events", json=body(), headers={"CF-Connecting-IP": "203.0.113.1"})
        second = client.post("/api/events", json=body(), headers={"CF-Connecting-IP": "203.0.113.2"})

        assert first.json()["rate_limited"] is False
        assert second.status_code == 200
        assert second.json()["rate_limited"] is True
        assert second.json()["event"]["rate_limited"] is True
        assert event_repo.count() == 2
