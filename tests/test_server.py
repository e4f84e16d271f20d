# ---------- TESTS FOR API SERVER ----------

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from jobpilot.api.server import app
from jobpilot.api.utils.state_helpers import get_pipeline
from jobpilot.utils.exceptions import InfrastructureError

from conftest import USER_ID, drain, manual_source

# --- MOCK DATA ---

HEADERS = {"X-User-Id": USER_ID}

CAMPAIGN_PAYLOAD = {
    "name": "Python roles",
    "criteria": {"target_roles": ["Python Developer"]},
    "source_ids": ["manual"],
    "match_threshold": 65,
}


@pytest.fixture
def client(pipeline):
    pipeline.store.put("sources", manual_source())
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_campaign(client, **overrides):
    response = client.post(
        "/api/campaigns", json={**CAMPAIGN_PAYLOAD, **overrides}, headers=HEADERS
    )
    assert response.status_code == 201
    return response.json()


# --- TESTS ---


def test_missing_user_header(client):
    """Test that requests without X-User-Id are rejected."""
    response = client.get("/api/campaigns")

    assert response.status_code == 400
    assert response.json()["detail"] == "X-User-Id header is required"


def test_create_and_get_campaign(client):
    """Test that a created campaign is returned as DRAFT and can be read back."""
    campaign = create_campaign(client)

    assert campaign["status"] == "DRAFT"
    assert campaign["match_threshold"] == 65
    response = client.get(f"/api/campaigns/{campaign['id']}", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["name"] == "Python roles"


def test_create_campaign_validation_error(client):
    """Test that an invalid payload returns 422 with field details."""
    response = client.post(
        "/api/campaigns",
        json={**CAMPAIGN_PAYLOAD, "match_threshold": 101},
        headers=HEADERS,
    )

    assert response.status_code == 422
    data = response.json()
    assert "message" in data
    assert any("match_threshold" in error["field"] for error in data["detail"])


def test_campaign_of_other_user_not_found(client):
    """Test that campaigns are scoped to the caller."""
    campaign = create_campaign(client)

    response = client.get(
        f"/api/campaigns/{campaign['id']}", headers={"X-User-Id": "someone-else"}
    )

    assert response.status_code == 404


def test_illegal_transition_is_conflict(client):
    """Test that pausing a DRAFT campaign returns 409 with the current status."""
    campaign = create_campaign(client)

    response = client.post(f"/api/campaigns/{campaign['id']}/pause", headers=HEADERS)

    assert response.status_code == 409
    assert response.json()["current_status"] == "DRAFT"


def test_update_and_delete_campaign(client):
    """Test PATCH on a DRAFT campaign and DELETE returning 204."""
    campaign = create_campaign(client)

    response = client.patch(
        f"/api/campaigns/{campaign['id']}", json={"name": "Backend"}, headers=HEADERS
    )
    assert response.json()["name"] == "Backend"

    response = client.delete(f"/api/campaigns/{campaign['id']}", headers=HEADERS)
    assert response.status_code == 204
    response = client.get(f"/api/campaigns/{campaign['id']}", headers=HEADERS)
    assert response.status_code == 404


def test_campaign_flow_to_confirmed_application(client, pipeline):
    """Test start, discovery, review and confirmation through the API."""
    campaign = create_campaign(client)
    response = client.post(f"/api/campaigns/{campaign['id']}/start", headers=HEADERS)
    assert response.json()["status"] == "ACTIVE"
    drain(pipeline)

    offers = client.get(
        f"/api/campaigns/{campaign['id']}/job-offers",
        params={"status": "MATCHED"},
        headers=HEADERS,
    ).json()
    assert len(offers) == 3

    listing = client.get(
        "/api/applications",
        params={"campaign_id": campaign["id"], "limit": 2},
        headers=HEADERS,
    ).json()
    assert listing["total"] == 3
    assert listing["has_more"] is True
    application_id = listing["items"][0]["id"]

    documents = client.get(
        f"/api/applications/{application_id}/documents", headers=HEADERS
    ).json()
    assert {d["type"] for d in documents} == {"CV", "COVER_LETTER"}

    response = client.post(
        f"/api/applications/{application_id}/confirm", headers=HEADERS
    )
    assert response.json()["status"] == "READY_TO_SUBMIT"
    drain(pipeline)

    application = client.get(
        f"/api/applications/{application_id}", headers=HEADERS
    ).json()
    assert application["status"] == "SUBMITTED"
    emails = client.get(
        f"/api/applications/{application_id}/emails", headers=HEADERS
    ).json()
    assert len(emails) == 1


def test_withdraw_with_reason(client, pipeline):
    """Test that withdraw accepts an optional reason body."""
    campaign = create_campaign(client)
    client.post(f"/api/campaigns/{campaign['id']}/start", headers=HEADERS)
    drain(pipeline)
    application_id = client.get("/api/applications", headers=HEADERS).json()[
        "items"
    ][0]["id"]

    response = client.post(
        f"/api/applications/{application_id}/withdraw",
        json={"reason": "Not interested"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "WITHDRAWN"
    assert response.json()["notes"] == "Not interested"


def test_trigger_discovery_accepted(client):
    """Test that manual discovery on an ACTIVE campaign returns 202."""
    campaign = create_campaign(client)
    client.post(f"/api/campaigns/{campaign['id']}/start", headers=HEADERS)

    response = client.post(
        f"/api/campaigns/{campaign['id']}/discover", headers=HEADERS
    )

    assert response.status_code == 202
    assert response.json() == {"campaign_id": campaign["id"], "status": "queued"}


def test_upsert_and_list_sources(client):
    """Test that sources can be created and listed."""
    response = client.put(
        "/api/sources/remote-rss",
        json={"name": "Remote RSS", "type": "RSS", "url": "https://x.test/feed"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["id"] == "remote-rss"

    sources = client.get("/api/sources", headers=HEADERS).json()
    assert [s["id"] for s in sources] == ["manual", "remote-rss"]


def test_health(client):
    """Test that health reports queue depths."""
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert set(data["queues"]) == {"discovery", "analysis", "generation", "dispatch"}


def test_health_unavailable_queue(client, pipeline):
    """Test that an unreachable queue backend reports 503."""
    pipeline.work_queue = MagicMock()
    pipeline.work_queue.depths.side_effect = InfrastructureError("SQS unavailable")

    response = client.get("/api/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


def test_cors_headers(client):
    """Test that CORS headers are present."""
    response = client.options(
        "/api/health",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "GET",
        },
    )

    assert response.status_code == 200
    assert "access-control-allow-origin" in response.headers


def test_request_id_is_echoed(client):
    """Test that the caller's request id is returned in the response."""
    response = client.get("/api/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
    assert client.get("/api/health").headers["X-Request-ID"]
