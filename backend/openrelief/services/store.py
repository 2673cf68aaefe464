"""
Persistence contract for the trust and consensus core.

Engines receive a store instance and hold no state of their own beyond
locks. Every read returns a detached snapshot; writes replace whole rows.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from openrelief.schemas.event import EmergencyEvent, EventStatus
from openrelief.schemas.trust import TrustHistoryEntry, TrustScore
from openrelief.schemas.vote import Endorsement, Vote, VoterProfile


class EmergencyStore(ABC):
    """Simple key/row store consumed by the engines."""

    # Trust scores
    @abstractmethod
    async def get_trust_score(self, user_id: str) -> TrustScore | None: ...

    @abstractmethod
    async def put_trust_score(self, user_id: str, score: TrustScore) -> None: ...

    @abstractmethod
    async def append_history(self, entry: TrustHistoryEntry) -> None: ...

    @abstractmethod
    async def list_history(self, user_id: str | None = None) -> list[TrustHistoryEntry]:
        """History in application order, optionally for one user."""

    @abstractmethod
    async def clear_history(self, user_id: str | None = None) -> int:
        """Bulk-delete history for one user or everyone; returns rows removed."""

    # Events
    @abstractmethod
    async def get_event(self, event_id: str) -> EmergencyEvent | None: ...

    @abstractmethod
    async def put_event(self, event: EmergencyEvent) -> None: ...

    @abstractmethod
    async def list_events(
        self, status: EventStatus | None = None
    ) -> list[EmergencyEvent]: ...

    # Votes
    @abstractmethod
    async def get_votes(self, event_id: str) -> list[Vote]: ...

    @abstractmethod
    async def put_vote(self, vote: Vote) -> None:
        """Store a vote, replacing any earlier vote by the same user."""

    # Voter metadata
    @abstractmethod
    async def get_voter_profiles(
        self, user_ids: Iterable[str]
    ) -> dict[str, VoterProfile]: ...

    @abstractmethod
    async def put_voter_profile(self, profile: VoterProfile) -> None: ...

    @abstractmethod
    async def get_endorsements(self, user_ids: Iterable[str]) -> list[Endorsement]:
        """Endorsements touching any of the given users, as endorser or endorsed."""

    @abstractmethod
    async def add_endorsement(self, endorsement: Endorsement) -> None: ...


class InMemoryStore(EmergencyStore):
    """Process-local store used by tests and the default development setup."""

    def __init__(self):
        self._scores: dict[str, TrustScore] = {}
        self._history: list[TrustHistoryEntry] = []
        self._events: dict[str, EmergencyEvent] = {}
        self._votes: dict[str, dict[str, Vote]] = {}
        self._profiles: dict[str, VoterProfile] = {}
        self._endorsements: list[Endorsement] = []

    async def get_trust_score(self, user_id: str) -> TrustScore | None:
        score = self._scores.get(user_id)
        return score.model_copy(deep=True) if score else None

    async def put_trust_score(self, user_id: str, score: TrustScore) -> None:
        self._scores[user_id] = score.model_copy(deep=True)

    async def append_history(self, entry: TrustHistoryEntry) -> None:
        self._history.append(entry)

    async def list_history(self, user_id: str | None = None) -> list[TrustHistoryEntry]:
        if user_id is None:
            return list(self._history)
        return [entry for entry in self._history if entry.user_id == user_id]

    async def clear_history(self, user_id: str | None = None) -> int:
        before = len(self._history)
        if user_id is None:
            self._history = []
            for score in self._scores.values():
                score.history = []
        else:
            self._history = [e for e in self._history if e.user_id != user_id]
            if user_id in self._scores:
                self._scores[user_id].history = []
        return before - len(self._history)

    async def get_event(self, event_id: str) -> EmergencyEvent | None:
        event = self._events.get(event_id)
        return event.model_copy(deep=True) if event else None

    async def put_event(self, event: EmergencyEvent) -> None:
        self._events[event.id] = event.model_copy(deep=True)

    async def list_events(
        self, status: EventStatus | None = None
    ) -> list[EmergencyEvent]:
        return [
            event.model_copy(deep=True)
            for event in self._events.values()
            if status is None or event.status == status
        ]

    async def get_votes(self, event_id: str) -> list[Vote]:
        return [vote.model_copy() for vote in self._votes.get(event_id, {}).values()]

    async def put_vote(self, vote: Vote) -> None:
        event_votes = self._votes.setdefault(vote.event_id, {})
        # Re-insert so a replaced vote moves to the end of the arrival order
        event_votes.pop(vote.user_id, None)
        event_votes[vote.user_id] = vote.model_copy()

    async def get_voter_profiles(
        self, user_ids: Iterable[str]
    ) -> dict[str, VoterProfile]:
        return {
            user_id: self._profiles[user_id].model_copy()
            for user_id in user_ids
            if user_id in self._profiles
        }

    async def put_voter_profile(self, profile: VoterProfile) -> None:
        self._profiles[profile.user_id] = profile.model_copy()

    async def get_endorsements(self, user_ids: Iterable[str]) -> list[Endorsement]:
        wanted = set(user_ids)
        return [
            e
            for e in self._endorsements
            if e.endorser_id in wanted or e.endorsed_id in wanted
        ]

    async def add_endorsement(self, endorsement: Endorsement) -> None:
        self._endorsements.append(endorsement)
