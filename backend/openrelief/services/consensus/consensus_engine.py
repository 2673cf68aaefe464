"""
Consensus Engine

Aggregates trust-weighted confirm/dispute votes on an emergency event into a
verdict with a confidence value. Anomaly flags from the Sybil detector are
attached for moderators but never change the verdict.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence

from openrelief.core.config import Settings, settings as default_settings
from openrelief.core.logging import get_logger
from openrelief.schemas.consensus import ConsensusResult, ConsensusVerdict
from openrelief.schemas.event import EmergencyEvent
from openrelief.schemas.vote import Endorsement, Vote, VoterProfile, VoteType
from openrelief.services.consensus.sybil_detector import SybilDetector
from openrelief.services.geo import distance_meters

logger = get_logger(__name__)


def fold_votes(votes: Iterable[Vote], event_id: str | None = None) -> list[Vote]:
    """
    One vote per user, last write wins.

    A replaced vote takes the position of its replacement so the order
    follows the latest arrivals. Votes for another event are dropped.
    """
    latest: dict[str, Vote] = {}
    for vote in votes:
        if event_id is not None and vote.event_id != event_id:
            continue
        latest.pop(vote.user_id, None)
        latest[vote.user_id] = vote
    return list(latest.values())


def vote_distance(vote: Vote, event: EmergencyEvent | None) -> float | None:
    """Meters between voter and event, or None when not derivable."""
    if vote.distance_from_event is not None:
        return vote.distance_from_event
    if event is None or vote.location is None:
        return None
    if not (vote.location.is_valid and event.location.is_valid):
        return None
    distance = distance_meters(vote.location, event.location)
    return None if math.isnan(distance) else distance


class ConsensusEngine:
    """
    Trust-weighted verdicts over event votes.

    Stateless apart from configuration; safe to share between events.
    """

    def __init__(
        self,
        config: Settings = default_settings,
        detector: SybilDetector | None = None,
    ):
        self.config = config
        self.detector = detector or SybilDetector(config)

    def distance_factor(self, distance: float | None) -> float:
        if distance is None:
            return 1.0
        return max(
            self.config.CONSENSUS_MIN_DISTANCE_WEIGHT,
            1.0 - distance / self.config.CONSENSUS_DISTANCE_DECAY_METERS,
        )

    def calculate_consensus(
        self,
        votes: Sequence[Vote],
        event: EmergencyEvent | None = None,
        *,
        profiles: Mapping[str, VoterProfile] | None = None,
        endorsements: Sequence[Endorsement] | None = None,
    ) -> ConsensusResult:
        """
        Compute the verdict for one event.

        Args:
            votes: Raw votes, possibly containing repeats by the same user
            event: Event the votes refer to, used for distances
            profiles: Voter account metadata for the detector
            endorsements: Endorsement edges for the detector

        Returns:
            ConsensusResult; insufficient data yields undecided, never an error
        """
        event_id = event.id if event else None
        votes = fold_votes(votes, event_id)
        insufficient = self.config.CONSENSUS_INSUFFICIENT_CONFIDENCE

        if not votes:
            return ConsensusResult(event_id=event_id, confidence=insufficient)

        confirm_weight = dispute_weight = 0.0
        adjusted_confirm = adjusted_dispute = 0.0
        confirm_votes = dispute_votes = 0
        distances: dict[str, float] = {}

        for vote in votes:
            distance = vote_distance(vote, event)
            if distance is not None:
                distances[vote.user_id] = distance
            adjusted = vote.trust_weight * self.distance_factor(distance)

            if vote.vote_type is VoteType.CONFIRM:
                confirm_weight += vote.trust_weight
                adjusted_confirm += adjusted
                confirm_votes += 1
            else:
                dispute_weight += vote.trust_weight
                adjusted_dispute += adjusted
                dispute_votes += 1

        total_votes = len(votes)
        verdict, confidence = self._verdict(confirm_weight, dispute_weight, total_votes)

        result = ConsensusResult(
            event_id=event_id,
            consensus=verdict,
            confidence=confidence,
            weighted_confirm_score=confirm_weight,
            weighted_dispute_score=dispute_weight,
            distance_adjusted_confirm_score=adjusted_confirm,
            distance_adjusted_dispute_score=adjusted_dispute,
            total_votes=total_votes,
            confirm_votes=confirm_votes,
            dispute_votes=dispute_votes,
            participants=[vote.user_id for vote in votes],
            anomalies=self._anomalies(votes, distances, profiles, endorsements),
        )

        logger.debug(
            f"Consensus for event {event_id}: {verdict.value} "
            f"(confidence {confidence:.3f}, {total_votes} votes)"
        )
        return result

    def _verdict(
        self, confirm_weight: float, dispute_weight: float, total_votes: int
    ) -> tuple[ConsensusVerdict, float]:
        cfg = self.config
        if total_votes < cfg.CONSENSUS_MIN_VOTES:
            return ConsensusVerdict.UNDECIDED, cfg.CONSENSUS_INSUFFICIENT_CONFIDENCE

        total_weight = confirm_weight + dispute_weight
        margin = abs(confirm_weight - dispute_weight) / total_weight if total_weight > 0 else 0.0

        # Only an exact tie is undecided by default, so any strictly heavier
        # side wins; a relative margin can be configured on top.
        if (
            total_weight <= 0
            or abs(confirm_weight - dispute_weight) <= cfg.CONSENSUS_TIE_EPSILON
            or margin < cfg.CONSENSUS_TIE_MARGIN
        ):
            verdict = ConsensusVerdict.UNDECIDED
        elif confirm_weight > dispute_weight:
            verdict = ConsensusVerdict.CONFIRM
        else:
            verdict = ConsensusVerdict.DISPUTE

        confidence = (
            0.5 * margin
            + 0.25 * min(1.0, total_weight / cfg.CONSENSUS_WEIGHT_SATURATION)
            + 0.25 * min(1.0, total_votes / cfg.CONSENSUS_VOTE_SATURATION)
        )
        confidence = min(confidence, cfg.CONSENSUS_MAX_CONFIDENCE)
        if verdict is ConsensusVerdict.UNDECIDED:
            confidence = min(confidence, cfg.CONSENSUS_UNDECIDED_MAX_CONFIDENCE)
        return verdict, confidence

    def _anomalies(
        self,
        votes: Sequence[Vote],
        distances: Mapping[str, float],
        profiles: Mapping[str, VoterProfile] | None,
        endorsements: Sequence[Endorsement] | None,
    ) -> list[str]:
        try:
            flags = self.detector.analyze(votes, distances, profiles, endorsements)
        except Exception as e:
            logger.exception(f"Anomaly detection failed: {e}")
            return []
        # dict.fromkeys keeps first-seen order
        return list(dict.fromkeys(flag.description for flag in flags))
