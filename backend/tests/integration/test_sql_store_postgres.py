"""
Integration tests for the PostgreSQL store.

Run against a disposable database:
    OPENRELIEF_TEST_POSTGRES_URL=postgresql+asyncpg://... pytest -m integration
"""

import os
from datetime import timedelta

import pytest
import pytest_asyncio

from openrelief.core.database import Base
from openrelief.models import sql_models  # noqa: F401
from openrelief.schemas.event import EmergencyEvent, EventStatus, Location, Severity
from openrelief.schemas.trust import TrustFactors, TrustScore
from openrelief.schemas.vote import Endorsement, Vote, VoterProfile
from openrelief.services.scoring.trust_engine import TrustScoreEngine
from openrelief.services.sql_store import SqlAlchemyStore

POSTGRES_URL = os.getenv("OPENRELIEF_TEST_POSTGRES_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not POSTGRES_URL, reason="OPENRELIEF_TEST_POSTGRES_URL not set"),
]


@pytest_asyncio.fixture
async def sql_store():
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    engine = create_async_engine(POSTGRES_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield SqlAlchemyStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


class TestSqlAlchemyStore:
    @pytest.mark.asyncio
    async def test_trust_score_with_history(self, sql_store, now):
        await sql_store.put_trust_score(
            "alice",
            TrustScore(
                user_id="alice",
                score=0.6,
                previous_score=0.6,
                factors=TrustFactors(expertise_areas={"fire"}),
                last_updated=now,
            ),
        )
        engine = TrustScoreEngine(sql_store, clock=lambda: now)

        await engine.update_trust_for_action("alice", "event-1", "report", "success", event_type="fire")
        await engine.update_trust_for_action("alice", "event-2", "confirm", "failure")

        stored = await sql_store.get_trust_score("alice")
        assert stored.factors.expertise_areas == {"fire"}
        assert [entry.event_id for entry in stored.history] == ["event-1", "event-2"]
        assert stored.score == pytest.approx(0.6 + 0.055 - 0.05)

        assert await sql_store.clear_history("alice") == 2
        assert await sql_store.list_history() == []

    @pytest.mark.asyncio
    async def test_event_round_trip_and_status_filter(self, sql_store, sample_event, now):
        await sql_store.put_event(sample_event)
        closed = sample_event.model_copy(
            update={"id": "event-2", "status": EventStatus.CLOSED, "closed_at": now}
        )
        await sql_store.put_event(closed)

        loaded = await sql_store.get_event("event-1")
        assert loaded.location == sample_event.location
        assert loaded.severity is Severity.HIGH
        assert [e.id for e in await sql_store.list_events(EventStatus.PENDING)] == ["event-1"]
        assert await sql_store.get_event("missing") is None

    @pytest.mark.asyncio
    async def test_votes_replace_per_user(self, sql_store, now):
        event = EmergencyEvent(
            id="event-1",
            type="flood",
            severity=Severity.LOW,
            title="Flooded underpass",
            location=Location(latitude=51.5, longitude=-0.12),
            reported_by="reporter",
            reported_at=now,
        )
        await sql_store.put_event(event)

        for vote_type, offset in (("confirm", 0), ("dispute", 30)):
            await sql_store.put_vote(
                Vote(
                    user_id="bob",
                    event_id="event-1",
                    vote_type=vote_type,
                    trust_weight=0.5,
                    timestamp=now + timedelta(seconds=offset),
                )
            )

        votes = await sql_store.get_votes("event-1")
        assert [(v.user_id, v.vote_type.value) for v in votes] == [("bob", "dispute")]

    @pytest.mark.asyncio
    async def test_profiles_and_endorsements(self, sql_store, now):
        await sql_store.put_voter_profile(VoterProfile(user_id="a", created_at=now))
        await sql_store.add_endorsement(Endorsement(endorser_id="a", endorsed_id="b"))
        await sql_store.add_endorsement(Endorsement(endorser_id="c", endorsed_id="d"))

        assert list(await sql_store.get_voter_profiles(["a", "z"])) == ["a"]
        edges = await sql_store.get_endorsements(["b"])
        assert [(e.endorser_id, e.endorsed_id) for e in edges] == [("a", "b")]
