"""Global pytest configuration and fixtures."""

import itertools
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

from openrelief.api.deps import get_lifecycle_controller
from openrelief.core.config import Settings
from openrelief.main import app
from openrelief.schemas.event import EmergencyEvent, Location, Severity
from openrelief.schemas.trust import TrustFactors, TrustScore
from openrelief.schemas.vote import Vote, VoteType
from openrelief.services.consensus.consensus_engine import ConsensusEngine
from openrelief.services.consensus.sybil_detector import SybilDetector
from openrelief.services.lifecycle.event_lifecycle import EventLifecycleController
from openrelief.services.notifier import Notifier
from openrelief.services.scoring.trust_engine import TrustScoreEngine
from openrelief.services.store import InMemoryStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
EVENT_LOCATION = Location(latitude=40.7128, longitude=-74.0060)


class RecordingNotifier(Notifier):
    """Keeps every published notification for assertions."""

    def __init__(self):
        self.published: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        self.published.append((topic, payload))

    def topics(self) -> list[str]:
        return [topic for topic, _ in self.published]


@pytest.fixture
def now() -> datetime:
    """Fixed clock used by every engine fixture."""
    return NOW


@pytest.fixture
def test_settings() -> Settings:
    """Settings with defaults only, independent of the environment."""
    return Settings(_env_file=None)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def trust_engine(store, notifier, test_settings) -> TrustScoreEngine:
    return TrustScoreEngine(store, notifier, test_settings, clock=lambda: NOW)


@pytest.fixture
def consensus_engine(test_settings) -> ConsensusEngine:
    return ConsensusEngine(test_settings, SybilDetector(test_settings))


@pytest.fixture
def controller(
    store, trust_engine, consensus_engine, notifier, test_settings
) -> EventLifecycleController:
    return EventLifecycleController(
        store,
        trust_engine,
        consensus_engine,
        notifier,
        test_settings,
        clock=lambda: NOW,
    )


@pytest.fixture
def seed_trust(store):
    """Store a trust score for a user directly."""

    async def _seed(user_id: str, score: float, **factors: Any) -> TrustScore:
        trust = TrustScore(
            user_id=user_id,
            score=score,
            previous_score=score,
            factors=TrustFactors(**factors),
            last_updated=NOW - timedelta(days=30),
        )
        await store.put_trust_score(user_id, trust)
        return trust

    return _seed


@pytest.fixture
def make_vote():
    """Build votes spaced a minute apart unless told otherwise."""
    arrivals = itertools.count()

    def _make(
        user_id: str,
        vote_type: VoteType | str,
        trust_weight: float,
        *,
        event_id: str = "event-1",
        offset_seconds: float | None = None,
        **extra: Any,
    ) -> Vote:
        offset = offset_seconds if offset_seconds is not None else 60.0 * next(arrivals)
        return Vote(
            user_id=user_id,
            event_id=event_id,
            vote_type=vote_type,
            trust_weight=trust_weight,
            timestamp=NOW + timedelta(seconds=offset),
            **extra,
        )

    return _make


@pytest.fixture
def sample_event() -> EmergencyEvent:
    return EmergencyEvent(
        id="event-1",
        type="fire",
        severity=Severity.HIGH,
        title="Warehouse fire",
        description="Smoke visible from the river",
        location=EVENT_LOCATION,
        reported_by="reporter",
        reported_at=NOW,
        trust_weight=0.85,
    )


@pytest.fixture
def client(controller) -> Generator[TestClient, None, None]:
    """Create FastAPI test client backed by an in-memory store."""
    app.dependency_overrides[get_lifecycle_controller] = lambda: controller

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
