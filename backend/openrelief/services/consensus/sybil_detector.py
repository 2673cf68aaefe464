"""
Sybil and collusion detection over the voter population of one event.

Flags are advisory. They are attached to consensus results for moderation
and never suppress or reweight votes.
"""

from __future__ import annotations

import statistics
from collections.abc import Iterable, Mapping, Sequence
from datetime import timedelta
from enum import Enum

import networkx as nx
import numpy as np
from pydantic import BaseModel, Field
from sklearn.cluster import DBSCAN

from openrelief.core.config import Settings, settings as default_settings
from openrelief.core.logging import get_logger
from openrelief.schemas.vote import Endorsement, Vote, VoterProfile, VoteType
from openrelief.services.geo import EARTH_RADIUS_METERS

logger = get_logger(__name__)


class AnomalyKind(str, Enum):
    LOW_TRUST_FLOOD = "low_trust_flood"
    LOW_TRUST_OPPOSITION = "low_trust_opposition"
    RAPID_VOTING = "rapid_voting"
    DISTANT_VOTES = "distant_votes"
    LOCATION_CLUSTER = "location_cluster"
    CREATION_BURST = "creation_burst"
    CIRCULAR_ENDORSEMENT = "circular_endorsement"


ANOMALY_DESCRIPTIONS = {
    AnomalyKind.LOW_TRUST_FLOOD: "High proportion of low-trust voters (potential Sybil attack)",
    AnomalyKind.LOW_TRUST_OPPOSITION: "Low-trust users opposing high-trust consensus",
    AnomalyKind.RAPID_VOTING: "Suspiciously rapid voting pattern",
    AnomalyKind.DISTANT_VOTES: "Votes from unusually distant locations",
    AnomalyKind.LOCATION_CLUSTER: "Multiple accounts voting from the same location",
    AnomalyKind.CREATION_BURST: "Voting accounts created in a tight time window",
    AnomalyKind.CIRCULAR_ENDORSEMENT: "Circular endorsement ring detected among voters",
}


class AnomalyFlag(BaseModel):
    """One suspicious pattern and the accounts involved."""

    kind: AnomalyKind
    description: str
    user_ids: list[str] = Field(default_factory=list)

    @classmethod
    def of(cls, kind: AnomalyKind, user_ids: Iterable[str] = ()) -> AnomalyFlag:
        return cls(kind=kind, description=ANOMALY_DESCRIPTIONS[kind], user_ids=list(user_ids))


class SybilDetector:
    """
    Statistical checks for coordinated manipulation.

    Implements:
    - Low-trust flood and low-trust opposition to high-trust voters
    - Timing clusters (votes arriving faster than humans plausibly do)
    - Distant outliers and same-location account clusters
    - Account creation bursts
    - Closed endorsement rings with no outside validation
    """

    def __init__(self, config: Settings = default_settings):
        self.config = config

    def analyze(
        self,
        votes: Sequence[Vote],
        distances: Mapping[str, float] | None = None,
        profiles: Mapping[str, VoterProfile] | None = None,
        endorsements: Sequence[Endorsement] | None = None,
    ) -> list[AnomalyFlag]:
        """
        Run every check over a de-duplicated vote set.

        Args:
            votes: One vote per user
            distances: Meters from the event, only for votes with location data
            profiles: Account metadata keyed by user id
            endorsements: Endorsement edges touching the voters

        Returns:
            Flags in a fixed check order
        """
        if not votes:
            return []

        checks = [
            self._low_trust_flood(votes),
            self._low_trust_opposition(votes),
            self._rapid_voting(votes),
            self._distant_votes(distances or {}),
            self._location_cluster(votes),
            self._creation_burst(votes, profiles or {}),
            self._circular_endorsement(votes, endorsements or []),
        ]
        flags = [flag for flag in checks if flag is not None]

        if flags:
            logger.warning(
                f"Detected {len(flags)} voting anomalies: "
                + ", ".join(flag.kind.value for flag in flags)
            )
        return flags

    def _low_trust_flood(self, votes: Sequence[Vote]) -> AnomalyFlag | None:
        low = [v.user_id for v in votes if v.trust_weight < self.config.SYBIL_LOW_TRUST_THRESHOLD]
        if len(low) > len(votes) * self.config.SYBIL_LOW_TRUST_FRACTION:
            return AnomalyFlag.of(AnomalyKind.LOW_TRUST_FLOOD, low)
        return None

    def _low_trust_opposition(self, votes: Sequence[Vote]) -> AnomalyFlag | None:
        high = [v for v in votes if v.trust_weight > self.config.SYBIL_HIGH_TRUST_THRESHOLD]
        low = [v for v in votes if v.trust_weight < self.config.SYBIL_LOW_TRUST_THRESHOLD]
        if not high or not low:
            return None

        high_confirms = sum(1 for v in high if v.vote_type is VoteType.CONFIRM)
        high_side = VoteType.CONFIRM if high_confirms > len(high) / 2 else VoteType.DISPUTE
        opposing = [v.user_id for v in low if v.vote_type is not high_side]

        if len(opposing) > len(low) * self.config.SYBIL_OPPOSITION_FRACTION:
            return AnomalyFlag.of(AnomalyKind.LOW_TRUST_OPPOSITION, opposing)
        return None

    def _rapid_voting(self, votes: Sequence[Vote]) -> AnomalyFlag | None:
        if len(votes) < self.config.SYBIL_TIMING_MIN_VOTES:
            return None

        times = sorted(v.timestamp.timestamp() for v in votes)
        mean_gap = (times[-1] - times[0]) / (len(times) - 1)
        if mean_gap < self.config.SYBIL_TIMING_WINDOW_SECONDS:
            return AnomalyFlag.of(AnomalyKind.RAPID_VOTING, (v.user_id for v in votes))
        return None

    def _distant_votes(self, distances: Mapping[str, float]) -> AnomalyFlag | None:
        if len(distances) < self.config.SYBIL_TIMING_MIN_VOTES:
            return None

        mean_distance = statistics.fmean(distances.values())
        cutoff = mean_distance * self.config.SYBIL_DISTANCE_OUTLIER_FACTOR
        distant = [user_id for user_id, d in distances.items() if d > cutoff]
        if distant:
            return AnomalyFlag.of(AnomalyKind.DISTANT_VOTES, distant)
        return None

    def _location_cluster(self, votes: Sequence[Vote]) -> AnomalyFlag | None:
        located = [v for v in votes if v.location is not None and v.location.is_valid]
        min_size = self.config.SYBIL_CLUSTER_MIN_SIZE
        if len(located) < min_size:
            return None

        coords = np.radians(
            [[v.location.latitude, v.location.longitude] for v in located]
        )
        labels = DBSCAN(
            eps=self.config.SYBIL_CLUSTER_RADIUS_METERS / EARTH_RADIUS_METERS,
            min_samples=min_size,
            metric="haversine",
            algorithm="ball_tree",
        ).fit_predict(coords)

        clustered = [v.user_id for v, label in zip(located, labels) if label >= 0]
        if clustered:
            return AnomalyFlag.of(AnomalyKind.LOCATION_CLUSTER, clustered)
        return None

    def _creation_burst(
        self, votes: Sequence[Vote], profiles: Mapping[str, VoterProfile]
    ) -> AnomalyFlag | None:
        min_size = self.config.SYBIL_CLUSTER_MIN_SIZE
        created = sorted(
            (profiles[v.user_id].created_at, v.user_id)
            for v in votes
            if v.user_id in profiles
        )
        if len(created) < min_size:
            return None

        window = timedelta(minutes=self.config.SYBIL_CREATION_WINDOW_MINUTES)
        start = 0
        for end in range(len(created)):
            while created[end][0] - created[start][0] > window:
                start += 1
            if end - start + 1 >= min_size:
                return AnomalyFlag.of(
                    AnomalyKind.CREATION_BURST,
                    (user_id for _, user_id in created[start : end + 1]),
                )
        return None

    def _circular_endorsement(
        self, votes: Sequence[Vote], endorsements: Sequence[Endorsement]
    ) -> AnomalyFlag | None:
        if not endorsements:
            return None

        voters = {v.user_id for v in votes}
        graph = nx.DiGraph()
        graph.add_edges_from(
            (e.endorser_id, e.endorsed_id)
            for e in endorsements
            if e.endorser_id != e.endorsed_id
        )

        ring_members: set[str] = set()
        for component in nx.strongly_connected_components(graph):
            if len(component) < self.config.SYBIL_MIN_RING_SIZE:
                continue
            if len(component & voters) < 2:
                continue
            # A ring only counts when nobody outside it vouches for a member
            externally_endorsed = any(
                endorser not in component
                for member in component
                for endorser in graph.predecessors(member)
            )
            if not externally_endorsed:
                ring_members |= component

        if ring_members:
            return AnomalyFlag.of(AnomalyKind.CIRCULAR_ENDORSEMENT, sorted(ring_members))
        return None
