import inspect

import pytest
from fastapi.testclient import TestClient

from review_autopilot.application import AutomationEngine
from review_autopilot.domain import ReviewStatus
from review_autopilot.web import app as web_app

from conftest import LOCATION, make_external, make_settings


@pytest.fixture
def engine(db, reviews, queue, workflows, outlets, gmb, replies, messaging, clock, outlet_id):
    return AutomationEngine(
        db, reviews, queue, workflows, outlets, gmb, replies, messaging,
        settings=make_settings(enabled=False), clock=clock,
    )


@pytest.fixture
def client(engine, monkeypatch):
    monkeypatch.setattr(web_app, "engine", engine)
    with TestClient(web_app.app) as client:
        yield client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_status_before_any_cycle(client):
    data = client.get("/api/automation/status").json()

    assert data["enabled"] is False
    assert data["running"] is False
    assert data["last_report"] is None


def test_run_cycle_in_background(client, gmb):
    gmb.reviews[LOCATION] = [make_external("rev-1", rating=5)]

    response = client.post("/api/automation/run")
    assert response.status_code == 202

    report = client.get("/api/automation/status").json()["last_report"]
    assert report["reviews_created"] == 1
    assert report["closed"] == 1


def test_manual_queue_and_reply(client, engine, gmb):
    gmb.reviews[LOCATION] = [make_external("rev-2", rating=2, comment="Cold food")]
    engine.run_cycle()

    items = client.get("/api/manual-queue").json()["items"]
    assert len(items) == 1
    assert items[0]["review"]["review_text"] == "Cold food"
    review_id = items[0]["review_id"]

    response = client.post(f"/api/reviews/{review_id}/manual-reply", json={"reply_text": "Sorry, Ana."})
    assert response.status_code == 200
    assert response.json()["review"]["status"] == ReviewStatus.COMPLETED.value

    assert client.get("/api/manual-queue").json()["items"] == []

    again = client.post(f"/api/reviews/{review_id}/manual-reply", json={"reply_text": "Again"})
    assert again.status_code == 409


def test_manual_reply_unknown_review(client):
    response = client.post("/api/reviews/missing/manual-reply", json={"reply_text": "Hi"})

    assert response.status_code == 404


def test_manual_reply_empty_text(client):
    response = client.post("/api/reviews/missing/manual-reply", json={"reply_text": "  "})

    assert response.status_code == 422


def test_database_endpoints_run_in_threadpool():
    assert not inspect.iscoroutinefunction(web_app.manual_reply)
    assert not inspect.iscoroutinefunction(web_app.manual_queue)
