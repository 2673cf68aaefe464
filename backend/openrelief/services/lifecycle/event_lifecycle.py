"""
Event Lifecycle Controller

Owns the state machine of emergency events: reporting, vote intake with
consensus-driven transitions, trust settlement, manual resolution and
closure, expiration of stale reports and archival eligibility.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from openrelief.core.config import Settings, settings as default_settings
from openrelief.core.exceptions import EventNotFound, InvalidStatusTransition
from openrelief.core.locks import KeyedLock
from openrelief.core.logging import get_logger, log_context
from openrelief.schemas.consensus import ConsensusResult, ConsensusVerdict, VoteOutcome
from openrelief.schemas.event import (
    ArchivalStatus,
    EmergencyEvent,
    EventOutcome,
    EventReportRequest,
    EventStatus,
    EventUpdate,
    EventUpdateRequest,
    FinalReport,
    Location,
    Severity,
    UpdateKind,
)
from openrelief.schemas.trust import ActionOutcome, ActionType
from openrelief.schemas.vote import Vote, VoteType
from openrelief.services.consensus.consensus_engine import ConsensusEngine, fold_votes
from openrelief.services.geo import distance_meters, is_valid_coordinate
from openrelief.services.notifier import Notifier, NullNotifier
from openrelief.services.scoring.trust_engine import TrustScoreEngine
from openrelief.services.store import EmergencyStore

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.PENDING: frozenset({EventStatus.ACTIVE, EventStatus.CLOSED}),
    EventStatus.ACTIVE: frozenset({EventStatus.RESOLVED, EventStatus.CLOSED}),
    EventStatus.RESOLVED: frozenset({EventStatus.CLOSED}),
    EventStatus.CLOSED: frozenset(),
}

DISPUTE_CLOSURE_REASON = "disputed by community consensus"
EXPIRED_CLOSURE_REASON = "expired without confirmation"

# Editable text fields and their column widths; None means unbounded
TEXT_FIELD_LIMITS: dict[str, int | None] = {
    "title": 500,
    "type": 100,
    "address": 500,
    "description": None,
}
REQUIRED_TEXT_FIELDS = ("title", "type")


def _coordinate(value: Any) -> float:
    """Best-effort float; unusable input becomes NaN and fails validation."""
    if isinstance(value, bool) or value is None:
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _text_issue(field: str, value: Any) -> str | None:
    if value is None and field not in REQUIRED_TEXT_FIELDS:
        return None
    if not isinstance(value, str):
        return f"Invalid {field}: expected text, got {type(value).__name__}"
    if field in REQUIRED_TEXT_FIELDS and not value.strip():
        return f"Empty {field}"
    limit = TEXT_FIELD_LIMITS[field]
    if limit is not None and len(value) > limit:
        return f"{field.capitalize()} longer than {limit} characters"
    return None


def _settled_outcome(action: ActionType, outcome: EventOutcome) -> ActionOutcome:
    # Reporters and confirmers were right when the event is confirmed,
    # disputers when it is refuted.
    was_right = (action is ActionType.DISPUTE) == (outcome is EventOutcome.REFUTED)
    return ActionOutcome.SUCCESS if was_right else ActionOutcome.FAILURE


class EventLifecycleController:
    """
    Drives events through pending -> active -> resolved -> closed.

    Vote intake and transitions for one event are serialized; different
    events progress independently.
    """

    def __init__(
        self,
        store: EmergencyStore,
        trust_engine: TrustScoreEngine,
        consensus_engine: ConsensusEngine | None = None,
        notifier: Notifier | None = None,
        config: Settings = default_settings,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.trust_engine = trust_engine
        self.consensus_engine = consensus_engine or ConsensusEngine(config)
        self.notifier = notifier or NullNotifier()
        self.config = config
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def get_event(self, event_id: str) -> EmergencyEvent:
        event = await self.store.get_event(event_id)
        if event is None:
            raise EventNotFound(event_id)
        return event

    async def get_consensus(self, event_id: str) -> ConsensusResult:
        event = await self.get_event(event_id)
        return await self._compute_consensus(event)

    async def _compute_consensus(self, event: EmergencyEvent) -> ConsensusResult:
        votes = fold_votes(await self.store.get_votes(event.id), event.id)
        voter_ids = [vote.user_id for vote in votes]
        profiles = await self.store.get_voter_profiles(voter_ids)
        endorsements = await self.store.get_endorsements(voter_ids)
        return self.consensus_engine.calculate_consensus(
            votes, event, profiles=profiles, endorsements=endorsements
        )

    # ------------------------------------------------------------------
    # Reporting and editing
    # ------------------------------------------------------------------

    async def report_event(
        self, request: EventReportRequest, now: datetime | None = None
    ) -> EmergencyEvent:
        """
        Create a pending event weighted by the reporter's current trust.

        Malformed fields never reject the report; they are recorded as
        integrity issues and the event is marked for review.
        """
        now = now or self._clock()
        issues: list[str] = []

        severity = self._parse_severity(request.severity, issues)
        location = self._parse_location(request.latitude, request.longitude, issues)
        if request.reporter_id is None:
            issues.append("Missing reporter")

        event = EmergencyEvent(
            id=str(uuid.uuid4()),
            type=request.type,
            severity=severity or Severity.MEDIUM,
            title=request.title,
            description=request.description,
            location=location,
            address=request.address,
            reported_by=request.reporter_id,
            reported_at=now,
            trust_weight=await self.trust_engine.current_score(request.reporter_id),
        )
        if issues:
            self._flag(event, issues)

        await self.store.put_event(event)
        logger.info(
            f"Event {event.id} reported by {event.reported_by} "
            f"({event.type}, {event.severity.value}, trust {event.trust_weight:.2f})"
        )
        return event

    async def update_event(
        self, event_id: str, changes: Mapping[str, Any], now: datetime | None = None
    ) -> EmergencyEvent:
        """
        Apply field edits to an event.

        Invalid values are skipped and flagged; the event is saved either
        way. A status change goes through the transition table.
        """
        now = now or self._clock()
        async with self._locks.hold(event_id):
            event = await self.get_event(event_id)
            issues: list[str] = []
            previous_status = event.status

            for field, value in changes.items():
                if field in TEXT_FIELD_LIMITS:
                    issue = _text_issue(field, value)
                    if issue:
                        issues.append(issue)
                    else:
                        setattr(event, field, value)
                elif field == "severity":
                    severity = self._parse_severity(value, issues)
                    if severity is not None:
                        event.severity = severity
                elif field == "reported_by":
                    if value is None:
                        issues.append("Missing reporter")
                    else:
                        event.reported_by = str(value)
                elif field == "trust_weight":
                    weight = _coordinate(value)
                    if math.isnan(weight) or weight < 0.0 or weight > 1.0:
                        issues.append(f"Invalid trust weight: {value!r}")
                    else:
                        event.trust_weight = weight
                elif field == "location":
                    value = value if isinstance(value, Mapping) else {}
                    location = self._parse_location(
                        value.get("latitude"), value.get("longitude"), issues
                    )
                    if location.is_valid:
                        event.location = location
                elif field == "status":
                    try:
                        target = EventStatus(value)
                    except ValueError:
                        issues.append(f"Unknown status: {value!r}")
                    else:
                        self._transition(event, target, now)
                else:
                    issues.append(f"Unknown field: {field}")

            if issues:
                self._flag(event, issues)
            await self.store.put_event(event)

        if event.status != previous_status:
            await self.notifier.event_status_changed(
                event.id, previous_status.value, event.status.value
            )
        return event

    async def add_update(
        self, event_id: str, request: EventUpdateRequest, now: datetime | None = None
    ) -> EmergencyEvent:
        now = now or self._clock()
        async with self._locks.hold(event_id):
            event = await self.get_event(event_id)
            event.updates.append(
                EventUpdate(
                    kind=request.kind,
                    message=request.message,
                    author_id=request.author_id,
                    timestamp=now,
                    payload=request.payload,
                )
            )
            await self.store.put_event(event)
        return event

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    async def cast_vote(
        self,
        event_id: str,
        user_id: str,
        vote_type: VoteType | str,
        location: Location | None = None,
        now: datetime | None = None,
    ) -> VoteOutcome:
        """
        Record a vote, recompute consensus and apply the transition policy.

        Args:
            event_id: Event being voted on
            user_id: Voter; an earlier vote by the same user is replaced
            vote_type: confirm or dispute
            location: Voter position, optional
            now: Vote timestamp

        Returns:
            VoteOutcome with the saved event and the fresh consensus

        Raises:
            EventNotFound: no such event
        """
        vote_type = VoteType(vote_type)
        now = now or self._clock()

        with log_context(event_id=event_id, user_id=user_id):
            async with self._locks.hold(event_id):
                event = await self.get_event(event_id)

                distance = None
                if location is not None and location.is_valid and event.location.is_valid:
                    distance = distance_meters(location, event.location)

                vote = Vote(
                    user_id=user_id,
                    event_id=event_id,
                    vote_type=vote_type,
                    trust_weight=await self.trust_engine.current_score(user_id),
                    timestamp=now,
                    location=location,
                    distance_from_event=distance,
                )
                await self.store.put_vote(vote)

                consensus = await self._compute_consensus(event)
                event.trust_weight = consensus.distance_adjusted_confirm_score
                event.confirmation_count = consensus.confirm_votes
                event.dispute_count = consensus.dispute_votes

                previous_status = event.status
                settled_before = event.outcome is not None
                transitioned = self._apply_consensus(event, consensus, now)
                await self.store.put_event(event)

                if transitioned:
                    await self._settle(event, consensus, now)
                elif settled_before and not await self._has_trust_entry(user_id, event_id):
                    # A late voter's first vote earns one provisional credit; changing
                    # a vote or voting after being settled earns nothing
                    await self.trust_engine.update_trust_for_action(
                        user_id,
                        event_id,
                        ActionType(vote_type.value),
                        ActionOutcome.PENDING,
                        event_type=event.type,
                        now=now,
                    )

            if transitioned:
                logger.info(
                    f"Consensus moved event {event_id} {previous_status.value} -> "
                    f"{event.status.value} ({consensus.consensus.value}, "
                    f"confidence {consensus.confidence:.2f})"
                )
                await self.notifier.consensus_reached(
                    event_id, consensus.consensus.value, consensus.confidence
                )
                await self.notifier.event_status_changed(
                    event_id, previous_status.value, event.status.value
                )
            if consensus.anomalies:
                logger.warning(f"Event {event_id} voting anomalies: {consensus.anomalies}")

            return VoteOutcome(event=event, consensus=consensus, transitioned=transitioned)

    def _apply_consensus(
        self, event: EmergencyEvent, consensus: ConsensusResult, now: datetime
    ) -> bool:
        """Apply at most one consensus-driven transition; settled events never move again."""
        if event.outcome is not None:
            return False

        cfg = self.config
        if (
            consensus.consensus is ConsensusVerdict.CONFIRM
            and consensus.confidence >= cfg.LIFECYCLE_ACTIVATION_CONFIDENCE
            and event.status is EventStatus.PENDING
        ):
            self._transition(event, EventStatus.ACTIVE, now)
            event.outcome = EventOutcome.CONFIRMED
            return True

        if (
            consensus.consensus is ConsensusVerdict.DISPUTE
            and consensus.confidence >= cfg.LIFECYCLE_DISPUTE_CONFIDENCE
            and event.status in (EventStatus.PENDING, EventStatus.ACTIVE)
        ):
            self._transition(event, EventStatus.CLOSED, now, reason=DISPUTE_CLOSURE_REASON)
            event.outcome = EventOutcome.REFUTED
            return True

        return False

    async def _settle(
        self, event: EmergencyEvent, consensus: ConsensusResult, now: datetime
    ) -> None:
        """Credit or debit the reporter and every voter exactly once."""
        outcome = event.outcome
        metadata = {
            "consensus": consensus.consensus.value,
            "confidence": consensus.confidence,
        }

        if event.reported_by is not None:
            await self.trust_engine.update_trust_for_action(
                event.reported_by,
                event.id,
                ActionType.REPORT,
                _settled_outcome(ActionType.REPORT, outcome),
                metadata,
                event_type=event.type,
                now=now,
            )

        for vote in fold_votes(await self.store.get_votes(event.id), event.id):
            action = ActionType(vote.vote_type.value)
            await self.trust_engine.update_trust_for_action(
                vote.user_id,
                event.id,
                action,
                _settled_outcome(action, outcome),
                metadata,
                event_type=event.type,
                now=now,
            )

    async def _has_trust_entry(self, user_id: str, event_id: str) -> bool:
        history = await self.trust_engine.get_history(user_id)
        return any(entry.event_id == event_id for entry in history)

    # ------------------------------------------------------------------
    # Manual transitions
    # ------------------------------------------------------------------

    async def resolve_event(
        self,
        event_id: str,
        final_report: FinalReport | None = None,
        resolver_id: str | None = None,
        now: datetime | None = None,
    ) -> EmergencyEvent:
        now = now or self._clock()
        async with self._locks.hold(event_id):
            event = await self.get_event(event_id)
            self._transition(event, EventStatus.RESOLVED, now)
            event.final_report = final_report or FinalReport()
            event.updates.append(
                EventUpdate(
                    kind=UpdateKind.STATUS,
                    message="Event resolved",
                    author_id=resolver_id,
                    timestamp=now,
                    payload=event.final_report.model_dump(),
                )
            )
            await self.store.put_event(event)

        logger.info(f"Event {event_id} resolved by {resolver_id}")
        await self.notifier.event_status_changed(
            event_id, EventStatus.ACTIVE.value, EventStatus.RESOLVED.value
        )
        return event

    async def close_event(
        self, event_id: str, reason: str = "closed", now: datetime | None = None
    ) -> EmergencyEvent:
        now = now or self._clock()
        async with self._locks.hold(event_id):
            event = await self.get_event(event_id)
            previous_status = event.status
            self._transition(event, EventStatus.CLOSED, now, reason=reason)
            await self.store.put_event(event)

        logger.info(f"Event {event_id} closed: {reason}")
        await self.notifier.event_status_changed(
            event_id, previous_status.value, EventStatus.CLOSED.value
        )
        return event

    def _transition(
        self,
        event: EmergencyEvent,
        target: EventStatus,
        now: datetime,
        reason: str | None = None,
    ) -> None:
        if target not in ALLOWED_TRANSITIONS[event.status]:
            raise InvalidStatusTransition(event.id, event.status.value, target.value)

        event.status = target
        if target is EventStatus.RESOLVED:
            event.resolved_at = now
        elif target is EventStatus.CLOSED:
            event.closed_at = now
            event.closure_reason = reason

    # ------------------------------------------------------------------
    # Expiration and retention
    # ------------------------------------------------------------------

    def is_expired(self, event: EmergencyEvent, now: datetime | None = None) -> bool:
        """Pending events that nobody confirmed within the expiration window."""
        now = now or self._clock()
        if event.status is not EventStatus.PENDING:
            return False
        window = timedelta(hours=self.config.LIFECYCLE_PENDING_EXPIRATION_HOURS)
        return now - event.reported_at > window

    async def expire_pending_events(self, now: datetime | None = None) -> list[str]:
        """Close every expired pending event and return their ids."""
        now = now or self._clock()
        expired: list[str] = []

        for candidate in await self.store.list_events(EventStatus.PENDING):
            async with self._locks.hold(candidate.id):
                # Re-read under the lock; a vote may have activated it meanwhile
                event = await self.store.get_event(candidate.id)
                if event is None or not self.is_expired(event, now):
                    continue
                self._transition(event, EventStatus.CLOSED, now, reason=EXPIRED_CLOSURE_REASON)
                await self.store.put_event(event)
            expired.append(event.id)
            await self.notifier.event_status_changed(
                event.id, EventStatus.PENDING.value, EventStatus.CLOSED.value
            )

        if expired:
            logger.info(f"Expired {len(expired)} pending events")
        return expired

    def retention_days(self, event: EmergencyEvent) -> int:
        by_severity = self.config.RETENTION_DAYS_BY_SEVERITY.get(event.severity.value, 0)
        by_type = self.config.RETENTION_DAYS_BY_TYPE.get(event.type, 0)
        return max(by_severity, by_type)

    def is_eligible_for_archival(
        self, event: EmergencyEvent, now: datetime | None = None
    ) -> bool:
        now = now or self._clock()
        if event.status not in (EventStatus.RESOLVED, EventStatus.CLOSED):
            return False
        finished_at = event.closed_at or event.resolved_at or event.reported_at
        return now - finished_at > timedelta(days=self.retention_days(event))

    async def archival_status(
        self, event_id: str, now: datetime | None = None
    ) -> ArchivalStatus:
        event = await self.get_event(event_id)
        return ArchivalStatus(
            event_id=event.id,
            eligible=self.is_eligible_for_archival(event, now),
            retention_days=self.retention_days(event),
        )

    async def archival_candidates(self, now: datetime | None = None) -> list[str]:
        now = now or self._clock()
        return [
            event.id
            for event in await self.store.list_events()
            if self.is_eligible_for_archival(event, now)
        ]

    # ------------------------------------------------------------------
    # Batch recompute
    # ------------------------------------------------------------------

    async def recompute_consensus_batch(
        self, event_ids: Iterable[str]
    ) -> dict[str, ConsensusResult | BaseException]:
        """
        Recompute consensus for many events concurrently.

        A failure or timeout is returned in place of that event's result and
        does not affect the others.
        """
        event_ids = list(dict.fromkeys(event_ids))
        timeout = self.config.LIFECYCLE_BATCH_TIMEOUT_SECONDS

        results = await asyncio.gather(
            *(asyncio.wait_for(self.get_consensus(eid), timeout) for eid in event_ids),
            return_exceptions=True,
        )

        outcome: dict[str, ConsensusResult | BaseException] = {}
        for event_id, result in zip(event_ids, results):
            if isinstance(result, BaseException):
                logger.warning(f"Consensus recompute failed for event {event_id}: {result!r}")
            outcome[event_id] = result
        return outcome

    # ------------------------------------------------------------------
    # Integrity helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_severity(value: Any, issues: list[str]) -> Severity | None:
        try:
            return Severity(value)
        except ValueError:
            issues.append(f"Unknown severity: {value!r}")
            return None

    @staticmethod
    def _parse_location(latitude: Any, longitude: Any, issues: list[str]) -> Location:
        location = Location(latitude=_coordinate(latitude), longitude=_coordinate(longitude))
        if not is_valid_coordinate(location.latitude, location.longitude):
            issues.append(f"Invalid coordinates: ({latitude!r}, {longitude!r})")
        return location

    @staticmethod
    def _flag(event: EmergencyEvent, issues: list[str]) -> None:
        event.data_integrity_flag = True
        event.review_required = True
        event.integrity_issues.extend(issues)
        logger.warning(f"Event {event.id} flagged for review: {'; '.join(issues)}")
