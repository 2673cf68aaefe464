"""
Logical notifications emitted by the core.

Delivery (push, SMS, email, websocket) belongs to external dispatchers. The
core never depends on delivery success: publish failures are logged and
dropped.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from openrelief.core.logging import get_logger

logger = get_logger(__name__)

TRUST_SCORE_CHANGED = "trust.score_changed"
CONSENSUS_REACHED = "event.consensus_reached"
EVENT_STATUS_CHANGED = "event.status_changed"


class Notifier(ABC):
    """Base notifier; subclasses implement `publish`."""

    @abstractmethod
    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """Hand one notification to the delivery layer."""

    async def _safe_publish(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            await self.publish(topic, payload)
        except Exception as e:
            logger.exception(f"Failed to publish {topic} notification: {e}")

    async def trust_score_changed(
        self, user_id: str, previous_score: float, new_score: float, change: float
    ) -> None:
        await self._safe_publish(
            TRUST_SCORE_CHANGED,
            {
                "user_id": user_id,
                "previous_score": previous_score,
                "new_score": new_score,
                "change": change,
            },
        )

    async def consensus_reached(
        self, event_id: str, consensus: str, confidence: float
    ) -> None:
        await self._safe_publish(
            CONSENSUS_REACHED,
            {"event_id": event_id, "consensus": consensus, "confidence": confidence},
        )

    async def event_status_changed(
        self, event_id: str, previous_status: str, new_status: str
    ) -> None:
        await self._safe_publish(
            EVENT_STATUS_CHANGED,
            {
                "event_id": event_id,
                "previous_status": previous_status,
                "new_status": new_status,
            },
        )


class LoggingNotifier(Notifier):
    """Writes notifications to the structured log."""

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        logger.info("notification", topic=topic, **payload)


class NullNotifier(Notifier):
    """Discards everything."""

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        return None
