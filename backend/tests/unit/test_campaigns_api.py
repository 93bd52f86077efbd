"""
Unit Tests for the HTTP API
Enrollment, status, scheduler control and health endpoints
"""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from outreach.api.v1.endpoints import health
from outreach.api.v1.routes import api_router
from outreach.container import OutreachContainer
from outreach.core.config import Settings

RECORD = {"database": "public", "collection": "restaurants", "document_id": "rest-1"}


@pytest.fixture
def container(tracking_store, source_store, telephony, llm, email_provider, cadence_config):
    settings = Settings(_env_file=None, check_interval_seconds=3600, startup_delay_seconds=3600)
    return OutreachContainer(
        settings=settings,
        cadence_config=cadence_config,
        store=tracking_store,
        source_store=source_store,
        telephony=telephony,
        llm=llm,
        email_provider=email_provider,
    )


@pytest.fixture
def app(container) -> FastAPI:
    app = FastAPI()
    app.include_router(health.router)
    app.include_router(api_router, prefix="/api/v1")
    app.state.container = container
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


class TestEnrollEndpoint:
    """POST /api/v1/campaigns/enroll"""

    def test_enroll_creates_record(self, client):
        response = client.post("/api/v1/campaigns/enroll", json={"records": [RECORD]})

        assert response.status_code == 200
        data = response.json()
        assert len(data["accepted"]) == 1
        assert data["accepted"][0]["action"] == "created"
        assert data["accepted"][0]["source"] == RECORD
        assert data["skipped"] == []
        assert data["failed"] == []

    def test_second_enroll_skipped(self, client):
        client.post("/api/v1/campaigns/enroll", json={"records": [RECORD]})
        response = client.post("/api/v1/campaigns/enroll", json={"records": [RECORD]})

        data = response.json()
        assert data["accepted"] == []
        assert data["skipped"][0]["reason"] == "active campaign exists"

    def test_custom_schedule(self, client):
        response = client.post("/api/v1/campaigns/enroll", json={
            "records": [RECORD],
            "schedule": {"mode": "production", "entries": [{"day": 1, "hour": 10}, {"day": 3, "hour": 15}]},
            "email": {"enabled": False},
            "created_by": "ops",
        })

        assert response.status_code == 200
        assert len(response.json()["accepted"]) == 1

    def test_invalid_schedule_entry_rejected(self, client):
        response = client.post("/api/v1/campaigns/enroll", json={
            "records": [RECORD],
            "schedule": {"entries": [{"minutes": 0, "day": 1, "hour": 10}]},
        })
        assert response.status_code == 422

    def test_empty_records_rejected(self, client):
        response = client.post("/api/v1/campaigns/enroll", json={"records": []})
        assert response.status_code == 422

    def test_schedule_too_long(self, client):
        response = client.post("/api/v1/campaigns/enroll", json={
            "records": [RECORD],
            "schedule": {"entries": [{"minutes": m} for m in range(0, 25, 5)]},
        })
        assert response.status_code == 400
        assert "at most 4" in response.json()["detail"]


class TestStatusEndpoint:
    """GET /api/v1/campaigns/status"""

    def test_status_for_ids(self, client):
        enrolled = client.post("/api/v1/campaigns/enroll", json={"records": [RECORD]}).json()
        tracking_id = enrolled["accepted"][0]["tracking_id"]

        response = client.get("/api/v1/campaigns/status", params={"tracking_ids": f"{tracking_id}, other"})

        assert response.status_code == 200
        assert response.json() == {
            "total": 1,
            "by_status": {"lead": 1},
            "by_step": {"0": 1},
            "in_flight": 0,
        }

    def test_status_all(self, client):
        response = client.get("/api/v1/campaigns/status")
        assert response.json()["total"] == 0


class TestSchedulerEndpoints:
    """Scheduler control"""

    def test_start_stop_cycle(self, client):
        assert client.get("/api/v1/scheduler/stats").json()["running"] is False

        assert client.post("/api/v1/scheduler/start").json() == {"running": True}
        assert client.get("/health").json()["scheduler"] == "running"

        assert client.post("/api/v1/scheduler/stop").json() == {"running": False}
        stats = client.get("/api/v1/scheduler/stats").json()
        assert stats["running"] is False
        assert stats["ticks"] == 0


class TestHealth:
    """Health and root endpoints"""

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["service"] == "outreach-engine"
        assert data["scheduler"] == "stopped"
        assert data["store"] == "InMemoryTrackingStore"

    def test_root(self, client):
        assert client.get("/").json()["message"] == "Outreach Campaign Engine"

    def test_not_initialized(self):
        app = FastAPI()
        app.include_router(health.router)
        app.include_router(api_router, prefix="/api/v1")

        with TestClient(app) as client:
            assert client.get("/health").json()["scheduler"] == "not_initialized"
            assert client.get("/api/v1/scheduler/stats").status_code == 503


class TestApplicationLifespan:
    """create_app wiring"""

    def test_lifespan_initializes_container(self, container, monkeypatch):
        from outreach import main

        monkeypatch.setattr(main, "build_container", lambda settings: container)

        with TestClient(main.create_app()) as client:
            data = client.get("/health").json()
            assert data["scheduler"] == "stopped"
            assert client.get("/api/v1/campaigns/status").status_code == 200


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
