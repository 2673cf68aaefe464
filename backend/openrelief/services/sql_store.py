"""
PostgreSQL-backed implementation of the emergency store.

Rows are converted to and from the pydantic schemas here and nowhere else:
expertise sets become JSON lists, nested updates and reports become JSON
documents, locations are split into latitude/longitude columns.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from openrelief.core.database import get_session_factory
from openrelief.models.sql_models import (
    EmergencyEventRecord,
    EndorsementRecord,
    EventVoteRecord,
    TrustHistoryRecord,
    TrustScoreRecord,
    VoterProfileRecord,
)
from openrelief.schemas.event import (
    EmergencyEvent,
    EventStatus,
    EventUpdate,
    FinalReport,
    Location,
)
from openrelief.schemas.trust import TrustFactors, TrustHistoryEntry, TrustScore
from openrelief.schemas.vote import Endorsement, Vote, VoterProfile
from openrelief.services.store import EmergencyStore


def _history_to_row(entry: TrustHistoryEntry) -> TrustHistoryRecord:
    return TrustHistoryRecord(
        entry_id=entry.id,
        user_id=entry.user_id,
        event_id=entry.event_id,
        action_type=entry.action_type.value,
        outcome=entry.outcome.value,
        change=entry.change,
        previous_score=entry.previous_score,
        new_score=entry.new_score,
        reason=entry.reason,
        timestamp=entry.timestamp,
        extra=entry.metadata,
    )


def _history_from_row(row: TrustHistoryRecord) -> TrustHistoryEntry:
    return TrustHistoryEntry(
        id=row.entry_id,
        user_id=row.user_id,
        event_id=row.event_id,
        action_type=row.action_type,
        outcome=row.outcome,
        change=row.change,
        previous_score=row.previous_score,
        new_score=row.new_score,
        reason=row.reason,
        timestamp=row.timestamp,
        metadata=row.extra,
    )


def _event_to_row(event: EmergencyEvent) -> EmergencyEventRecord:
    return EmergencyEventRecord(
        id=event.id,
        type=event.type,
        severity=event.severity.value,
        title=event.title,
        description=event.description,
        latitude=event.location.latitude,
        longitude=event.location.longitude,
        address=event.address,
        reported_by=event.reported_by,
        reported_at=event.reported_at,
        status=event.status.value,
        trust_weight=event.trust_weight,
        updates=[update.model_dump(mode="json") for update in event.updates],
        confirmation_count=event.confirmation_count,
        dispute_count=event.dispute_count,
        outcome=event.outcome.value if event.outcome else None,
        resolved_at=event.resolved_at,
        closed_at=event.closed_at,
        closure_reason=event.closure_reason,
        final_report=event.final_report.model_dump(mode="json") if event.final_report else None,
        data_integrity_flag=event.data_integrity_flag,
        review_required=event.review_required,
        integrity_issues=list(event.integrity_issues),
    )


def _event_from_row(row: EmergencyEventRecord) -> EmergencyEvent:
    return EmergencyEvent(
        id=row.id,
        type=row.type,
        severity=row.severity,
        title=row.title,
        description=row.description,
        location=Location(latitude=row.latitude, longitude=row.longitude),
        address=row.address,
        reported_by=row.reported_by,
        reported_at=row.reported_at,
        status=row.status,
        trust_weight=row.trust_weight or 0.0,
        updates=[EventUpdate.model_validate(u) for u in row.updates or []],
        confirmation_count=row.confirmation_count or 0,
        dispute_count=row.dispute_count or 0,
        outcome=row.outcome,
        resolved_at=row.resolved_at,
        closed_at=row.closed_at,
        closure_reason=row.closure_reason,
        final_report=FinalReport.model_validate(row.final_report) if row.final_report else None,
        data_integrity_flag=bool(row.data_integrity_flag),
        review_required=bool(row.review_required),
        integrity_issues=list(row.integrity_issues or []),
    )


def _vote_to_row(vote: Vote) -> EventVoteRecord:
    return EventVoteRecord(
        event_id=vote.event_id,
        user_id=vote.user_id,
        vote_type=vote.vote_type.value,
        trust_weight=vote.trust_weight,
        timestamp=vote.timestamp,
        latitude=vote.location.latitude if vote.location else None,
        longitude=vote.location.longitude if vote.location else None,
        distance_from_event=vote.distance_from_event,
    )


def _vote_from_row(row: EventVoteRecord) -> Vote:
    location = None
    if row.latitude is not None and row.longitude is not None:
        location = Location(latitude=row.latitude, longitude=row.longitude)
    return Vote(
        user_id=row.user_id,
        event_id=row.event_id,
        vote_type=row.vote_type,
        trust_weight=row.trust_weight,
        timestamp=row.timestamp,
        location=location,
        distance_from_event=row.distance_from_event,
    )


class SqlAlchemyStore(EmergencyStore):
    """Store backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory or get_session_factory()

    async def get_trust_score(self, user_id: str) -> TrustScore | None:
        async with self._session_factory() as session:
            row = await session.get(TrustScoreRecord, user_id)
            if row is None:
                return None
            history = await session.execute(
                select(TrustHistoryRecord)
                .where(TrustHistoryRecord.user_id == user_id)
                .order_by(TrustHistoryRecord.seq)
            )
            return TrustScore(
                user_id=row.user_id,
                score=row.score,
                previous_score=row.previous_score,
                factors=TrustFactors.model_validate(row.factors),
                last_updated=row.last_updated,
                history=[_history_from_row(h) for h in history.scalars()],
            )

    async def put_trust_score(self, user_id: str, score: TrustScore) -> None:
        async with self._session_factory() as session:
            await session.merge(
                TrustScoreRecord(
                    user_id=user_id,
                    score=score.score,
                    previous_score=score.previous_score,
                    factors=score.factors.model_dump(mode="json"),
                    last_updated=score.last_updated,
                )
            )
            await session.commit()

    async def append_history(self, entry: TrustHistoryEntry) -> None:
        async with self._session_factory() as session:
            session.add(_history_to_row(entry))
            await session.commit()

    async def list_history(self, user_id: str | None = None) -> list[TrustHistoryEntry]:
        query = select(TrustHistoryRecord).order_by(TrustHistoryRecord.seq)
        if user_id is not None:
            query = query.where(TrustHistoryRecord.user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_history_from_row(row) for row in result.scalars()]

    async def clear_history(self, user_id: str | None = None) -> int:
        statement = delete(TrustHistoryRecord)
        if user_id is not None:
            statement = statement.where(TrustHistoryRecord.user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            await session.commit()
            return result.rowcount or 0

    async def get_event(self, event_id: str) -> EmergencyEvent | None:
        async with self._session_factory() as session:
            row = await session.get(EmergencyEventRecord, event_id)
            return _event_from_row(row) if row else None

    async def put_event(self, event: EmergencyEvent) -> None:
        async with self._session_factory() as session:
            await session.merge(_event_to_row(event))
            await session.commit()

    async def list_events(self, status: EventStatus | None = None) -> list[EmergencyEvent]:
        query = select(EmergencyEventRecord).order_by(EmergencyEventRecord.reported_at)
        if status is not None:
            query = query.where(EmergencyEventRecord.status == status.value)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_event_from_row(row) for row in result.scalars()]

    async def get_votes(self, event_id: str) -> list[Vote]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EventVoteRecord)
                .where(EventVoteRecord.event_id == event_id)
                .order_by(EventVoteRecord.timestamp)
            )
            return [_vote_from_row(row) for row in result.scalars()]

    async def put_vote(self, vote: Vote) -> None:
        async with self._session_factory() as session:
            await session.merge(_vote_to_row(vote))
            await session.commit()

    async def get_voter_profiles(self, user_ids: Iterable[str]) -> dict[str, VoterProfile]:
        wanted = list(set(user_ids))
        if not wanted:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(VoterProfileRecord).where(VoterProfileRecord.user_id.in_(wanted))
            )
            return {
                row.user_id: VoterProfile(user_id=row.user_id, created_at=row.created_at)
                for row in result.scalars()
            }

    async def put_voter_profile(self, profile: VoterProfile) -> None:
        async with self._session_factory() as session:
            await session.merge(
                VoterProfileRecord(user_id=profile.user_id, created_at=profile.created_at)
            )
            await session.commit()

    async def get_endorsements(self, user_ids: Iterable[str]) -> list[Endorsement]:
        wanted = list(set(user_ids))
        if not wanted:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(EndorsementRecord)
                .where(
                    or_(
                        EndorsementRecord.endorser_id.in_(wanted),
                        EndorsementRecord.endorsed_id.in_(wanted),
                    )
                )
                .order_by(EndorsementRecord.id)
            )
            return [
                Endorsement(
                    endorser_id=row.endorser_id,
                    endorsed_id=row.endorsed_id,
                    timestamp=row.timestamp,
                )
                for row in result.scalars()
            ]

    async def add_endorsement(self, endorsement: Endorsement) -> None:
        async with self._session_factory() as session:
            session.add(
                EndorsementRecord(
                    endorser_id=endorsement.endorser_id,
                    endorsed_id=endorsement.endorsed_id,
                    timestamp=endorsement.timestamp,
                )
            )
            await session.commit()
