"""
Unit tests for notification publishing.
"""

from unittest.mock import AsyncMock, patch

import pytest

from openrelief.services.notifier import (
    CONSENSUS_REACHED,
    TRUST_SCORE_CHANGED,
    LoggingNotifier,
    Notifier,
    NullNotifier,
)
from openrelief.services.scoring.trust_engine import TrustScoreEngine


class FailingNotifier(Notifier):
    async def publish(self, topic, payload):
        raise ConnectionError("push gateway unreachable")


@pytest.mark.unit
class TestNotifier:
    @pytest.mark.asyncio
    async def test_payloads(self, notifier):
        await notifier.trust_score_changed("user", 0.5, 0.55, 0.05)
        await notifier.consensus_reached("event-1", "confirm", 0.9)

        assert notifier.published == [
            (
                TRUST_SCORE_CHANGED,
                {"user_id": "user", "previous_score": 0.5, "new_score": 0.55, "change": 0.05},
            ),
            (CONSENSUS_REACHED, {"event_id": "event-1", "consensus": "confirm", "confidence": 0.9}),
        ]

    @pytest.mark.asyncio
    async def test_delivery_failure_does_not_propagate(self):
        with patch("openrelief.services.notifier.logger") as mock_logger:
            await FailingNotifier().event_status_changed("event-1", "pending", "active")

        mock_logger.exception.assert_called_once()

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_break_trust_updates(self, store):
        engine = TrustScoreEngine(store, FailingNotifier())
        updated = await engine.update_trust_for_action("user", "event-1", "report", "success")

        assert updated.score == pytest.approx(0.55)

    @pytest.mark.asyncio
    async def test_logging_notifier(self):
        with patch("openrelief.services.notifier.logger") as mock_logger:
            await LoggingNotifier().consensus_reached("event-1", "dispute", 0.6)

        mock_logger.info.assert_called_once_with(
            "notification",
            topic=CONSENSUS_REACHED,
            event_id="event-1",
            consensus="dispute",
            confidence=0.6,
        )

    @pytest.mark.asyncio
    async def test_null_notifier(self):
        notifier = NullNotifier()
        notifier.publish = AsyncMock(wraps=notifier.publish)

        await notifier.trust_score_changed("user", 0.5, 0.4, -0.1)

        notifier.publish.assert_awaited_once()

    def test_base_notifier_is_abstract(self):
        with pytest.raises(TypeError):
            Notifier()

    def test_subclass_without_publish_is_abstract(self):
        class Incomplete(Notifier):
            pass

        with pytest.raises(TypeError):
            Incomplete()
