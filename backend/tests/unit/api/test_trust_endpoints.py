"""
Unit tests for Trust Scoring API endpoints.
"""

from unittest.mock import AsyncMock

import pytest

API = "/api/v1/trust"


@pytest.mark.unit
class TestCalculateTrustScore:
    """Test /trust/calculate endpoint."""

    def test_calculate_from_factors(self, client):
        response = client.post(
            f"{API}/calculate",
            json={
                "reporting_accuracy": 1.0,
                "confirmation_accuracy": 1.0,
                "dispute_accuracy": 1.0,
                "response_time": 0,
                "location_accuracy": 1.0,
                "contribution_frequency": 10,
                "community_endorsement": 1.0,
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["score"] == pytest.approx(0.95)
        assert data["confidence"] == pytest.approx(0.9375)

    def test_garbage_factors_are_normalized(self, client):
        response = client.post(
            f"{API}/calculate",
            json={"reporting_accuracy": "lots", "penalty_score": 40, "response_time": -5},
        )

        assert response.status_code == 200
        data = response.json()
        assert 0.0 <= data["score"] <= 1.0
        assert 0.0 <= data["confidence"] <= 1.0


@pytest.mark.unit
class TestUserTrust:
    """Test per-user trust endpoints."""

    def test_unknown_user(self, client):
        response = client.get(f"{API}/users/nobody")
        assert response.status_code == 404

    def test_apply_action_then_read(self, client):
        response = client.post(
            f"{API}/users/alice/actions",
            json={"event_id": "event-1", "action_type": "report", "outcome": "success"},
        )

        assert response.status_code == 200
        assert response.json()["score"] == pytest.approx(0.55)

        score = client.get(f"{API}/users/alice").json()
        assert score["previous_score"] == 0.5
        assert len(score["history"]) == 1

        history = client.get(f"{API}/users/alice/history").json()
        assert [entry["action_type"] for entry in history] == ["report"]

    def test_invalid_action(self, client):
        response = client.post(
            f"{API}/users/alice/actions",
            json={"event_id": "event-1", "action_type": "upvote", "outcome": "success"},
        )

        assert response.status_code == 400
        assert "upvote" in response.json()["detail"]

    def test_permissions(self, client):
        client.post(
            f"{API}/users/bob/actions",
            json={"event_id": "event-1", "action_type": "confirm", "outcome": "success"},
        )

        response = client.get(f"{API}/users/bob/permissions")

        assert response.status_code == 200
        data = response.json()
        assert data["can_report"] and data["can_confirm"] and data["can_dispute"]
        assert not data["is_high_trust"]

    def test_permissions_unknown_user(self, client):
        data = client.get(f"{API}/users/ghost/permissions").json()
        assert data["score"] is None
        assert not data["can_report"]

    def test_update_factors(self, client):
        client.post(
            f"{API}/users/carol/actions",
            json={"event_id": "event-1", "action_type": "report", "outcome": "pending"},
        )

        response = client.patch(f"{API}/users/carol/factors", json={"reporting_accuracy": 1.0})

        assert response.status_code == 200
        data = response.json()
        assert data["factors"]["reporting_accuracy"] == 1.0
        assert data["previous_score"] == pytest.approx(0.51)

    def test_update_factors_unknown_user(self, client):
        response = client.patch(f"{API}/users/ghost/factors", json={"reporting_accuracy": 1.0})
        assert response.status_code == 404

    def test_internal_error(self, client, controller):
        controller.trust_engine.get_history = AsyncMock(side_effect=RuntimeError("db down"))

        response = client.get(f"{API}/users/alice/history")

        assert response.status_code == 500
        assert response.json()["detail"] == "Internal server error"
