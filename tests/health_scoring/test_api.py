"""
Tests for the HTTP API.
"""

import logging
import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from org_health import HealthQueryService
from org_health.api import create_app
from org_health.logging_config import setup_logging


@pytest.fixture
def app(orchestrator, store, config):
    return create_app(orchestrator, HealthQueryService(store, config))


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def wait_for_run(client, run_id, attempts=200):
    for _ in range(attempts):
        data = client.get(f"/health-scores/runs/{run_id}").json()["data"]
        if data["state"] in ("completed", "completed_with_errors"):
            return data
        time.sleep(0.01)
    raise AssertionError(f"run {run_id} did not finish")


class TestRecalculationEndpoints:
    """Tests for triggering and polling runs."""

    def test_recalculate_all(self, client):
        response = client.post("/health-scores/recalculate")

        assert response.status_code == 202
        run = wait_for_run(client, response.json()["run_id"])
        assert run["scope"] == "all"
        assert run["state"] == "completed"
        assert run["succeeded"] == 3
        assert run["failures"] == []

    def test_recalculate_single_organization(self, client):
        response = client.post("/health-scores/recalculate", json={"organization_id": "org-2"})

        run = wait_for_run(client, response.json()["run_id"])
        assert run["scope"] == "org-2"
        assert run["total"] == 1

    def test_recalculate_unknown_organization(self, client):
        response = client.post("/health-scores/recalculate", json={"organization_id": "org-404"})

        run = wait_for_run(client, response.json()["run_id"])
        assert run["state"] == "completed_with_errors"
        assert run["failures"][0]["error_type"] == "OrganizationNotFound"

    def test_unknown_run(self, client):
        assert client.get("/health-scores/runs/missing").status_code == 404
        assert client.post("/health-scores/runs/missing/cancel").status_code == 404

    def test_cancel_finished_run(self, client):
        run_id = client.post("/health-scores/recalculate").json()["run_id"]
        wait_for_run(client, run_id)

        response = client.post(f"/health-scores/runs/{run_id}/cancel")

        assert response.status_code == 200
        assert response.json()["message"] == "Run already finished"
        assert response.json()["data"]["cancelled"] is False


class TestQueryEndpoints:
    """Tests for the read endpoints."""

    def test_organization_health(self, client):
        wait_for_run(client, client.post("/health-scores/recalculate").json()["run_id"])

        response = client.get("/health-scores/org-1")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["composite_score"] == 74
        assert data["risk_level"] == "healthy"
        assert data["organization_name"] == "Drop Dead Salon"
        assert data["snapshot_date"] == "2026-03-10"
        assert len(data["categories"]) == 4
        assert data["trend"]["direction"] == "flat"
        assert data["trend"]["score_n_days_ago"] is None

    def test_organization_trend(self, client, store, snapshot_factory, now):
        client.portal.call(store.upsert, snapshot_factory("org-1", 90, computed_at=now - timedelta(days=8)))
        wait_for_run(client, client.post("/health-scores/recalculate").json()["run_id"])

        data = client.get("/health-scores/org-1").json()["data"]

        assert data["trend"]["score_n_days_ago"] == 90
        assert data["trend"]["direction"] == "down"
        assert data["trend"]["delta"] == -16

    def test_unknown_organization(self, client):
        assert client.get("/health-scores/org-404").status_code == 404

    def test_list_and_filter(self, client, sources):
        sources["adoption"].set_value("org-3", 0)
        sources["engagement"].set_value("org-3", 0)
        wait_for_run(client, client.post("/health-scores/recalculate").json()["run_id"])

        everything = client.get("/health-scores").json()
        healthy = client.get("/health-scores", params={"risk_level": "healthy"}).json()
        searched = client.get("/health-scores", params={"search": "blonde"}).json()

        assert everything["count"] == 3
        assert everything["data"][0]["organization_id"] == "org-3"
        assert [o["organization_id"] for o in healthy["data"]] == ["org-1", "org-2"]
        assert [o["organization_id"] for o in searched["data"]] == ["org-2"]

    def test_invalid_risk_level(self, client):
        assert client.get("/health-scores", params={"risk_level": "doomed"}).status_code == 422

    def test_distribution(self, client):
        empty = client.get("/health-scores/distribution").json()["data"]
        assert empty["total"] == 0
        assert empty["mean_score"] is None

        wait_for_run(client, client.post("/health-scores/recalculate").json()["run_id"])
        data = client.get("/health-scores/distribution").json()["data"]

        assert data["counts"] == {"healthy": 3, "at_risk": 0, "critical": 0}
        assert data["mean_score"] == 74.0

    def test_root(self, client):
        assert client.get("/").json()["status"] == "ok"


def test_setup_logging_json(capsys):
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    try:
        logger = setup_logging(level="debug", log_format="json", correlation_id="run-1")
        logging.getLogger("org_health.test").info("hello")

        assert logger.name == "org_health"
        assert root.level == logging.DEBUG
        out = capsys.readouterr().out
        assert '"message": "hello"' in out
        assert '"correlation_id": "run-1"' in out
    finally:
        root.handlers = handlers
        root.setLevel(level)
