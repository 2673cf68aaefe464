"""
Unit tests for Emergency Event API endpoints.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

API = "/api/v1/events"

REPORT = {
    "reporter_id": "reporter",
    "type": "fire",
    "severity": "high",
    "title": "Warehouse fire",
    "latitude": 40.7128,
    "longitude": -74.0060,
}


@pytest.fixture
def event_id(client):
    response = client.post(API, json=REPORT)
    assert response.status_code == 201
    return response.json()["id"]


@pytest.mark.unit
class TestReportAndRead:
    def test_report_event(self, client):
        response = client.post(API, json=REPORT)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["trust_weight"] == 0.5
        assert data["data_integrity_flag"] is False

    def test_report_with_bad_severity_is_flagged(self, client):
        response = client.post(API, json={**REPORT, "severity": "biblical"})

        assert response.status_code == 201
        data = response.json()
        assert data["data_integrity_flag"] is True
        assert data["severity"] == "medium"

    def test_get_event(self, client, event_id):
        response = client.get(f"{API}/{event_id}")
        assert response.status_code == 200
        assert response.json()["title"] == "Warehouse fire"

    def test_get_missing_event(self, client):
        response = client.get(f"{API}/missing")
        assert response.status_code == 404
        assert response.json()["detail"] == "Event not found"

    def test_internal_error(self, client, controller):
        controller.get_event = AsyncMock(side_effect=RuntimeError("db down"))

        response = client.get(f"{API}/anything")

        assert response.status_code == 500


@pytest.mark.unit
class TestVotingEndpoints:
    def test_votes_activate_event(self, client, event_id):
        first = client.post(
            f"{API}/{event_id}/votes",
            json={"user_id": "a", "vote_type": "confirm", "latitude": 40.7128, "longitude": -74.006},
        )
        assert first.status_code == 200
        assert first.json()["transitioned"] is False

        second = client.post(f"{API}/{event_id}/votes", json={"user_id": "b", "vote_type": "confirm"})
        data = second.json()

        assert data["transitioned"] is True
        assert data["event"]["status"] == "active"
        assert data["consensus"]["consensus"] == "confirm"
        assert data["consensus"]["participants"] == ["a", "b"]

    def test_invalid_vote_type(self, client, event_id):
        response = client.post(
            f"{API}/{event_id}/votes", json={"user_id": "a", "vote_type": "meh"}
        )
        assert response.status_code == 422

    def test_vote_on_missing_event(self, client):
        response = client.post(f"{API}/missing/votes", json={"user_id": "a", "vote_type": "confirm"})
        assert response.status_code == 404

    def test_get_consensus(self, client, event_id):
        client.post(f"{API}/{event_id}/votes", json={"user_id": "a", "vote_type": "dispute"})

        response = client.get(f"{API}/{event_id}/consensus")

        assert response.status_code == 200
        data = response.json()
        assert data["consensus"] == "undecided"
        assert data["confidence"] == pytest.approx(0.1)
        assert data["dispute_votes"] == 1


@pytest.mark.unit
class TestLifecycleEndpoints:
    def test_full_manual_lifecycle(self, client, event_id):
        assert client.patch(f"{API}/{event_id}", json={"status": "active"}).status_code == 200

        update = client.post(
            f"{API}/{event_id}/updates",
            json={"kind": "casualty", "message": "Two treated for smoke inhalation"},
        )
        assert update.status_code == 200
        assert update.json()["updates"][0]["kind"] == "casualty"

        resolved = client.post(
            f"{API}/{event_id}/resolve",
            json={"resolver_id": "chief", "final_report": {"casualties": 2, "resources_used": ["engine-7"]}},
        )
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "resolved"
        assert resolved.json()["final_report"]["casualties"] == 2

        closed = client.post(f"{API}/{event_id}/close", json={"reason": "cleared"})
        assert closed.status_code == 200
        assert closed.json()["closure_reason"] == "cleared"

    def test_invalid_transition(self, client, event_id):
        response = client.post(f"{API}/{event_id}/resolve", json={"resolver_id": "chief"})

        assert response.status_code == 400
        assert "pending" in response.json()["detail"]

    def test_patch_flags_invalid_fields(self, client, event_id):
        response = client.patch(f"{API}/{event_id}", json={"trust_weight": -1, "title": "Updated"})

        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Updated"
        assert data["review_required"] is True
        assert data["integrity_issues"] == ["Invalid trust weight: -1"]

    def test_archival_status(self, client, event_id):
        response = client.get(f"{API}/{event_id}/archival")

        assert response.status_code == 200
        assert response.json() == {"event_id": event_id, "eligible": False, "retention_days": 60}

    def test_expire(self, client, store, sample_event, now):
        stale = sample_event.model_copy(update={"reported_at": now - timedelta(hours=30)})
        asyncio.run(store.put_event(stale))
        client.post(API, json=REPORT)

        response = client.post(f"{API}/expire")

        assert response.status_code == 200
        assert response.json() == {"expired_event_ids": [stale.id]}
