"""
Trust Score Engine

Maintains a per-user trust score from weighted behavioral factors and evolves
it as users report, confirm and dispute emergencies. Scores are bounded to
[0, 1]; every change is recorded as an immutable history entry.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from openrelief.core.config import Settings, settings as default_settings
from openrelief.core.exceptions import InvalidActionKind
from openrelief.core.locks import KeyedLock
from openrelief.core.logging import get_logger, log_context
from openrelief.schemas.trust import (
    ActionOutcome,
    ActionType,
    TrustCalculation,
    TrustFactors,
    TrustHistoryEntry,
    TrustPermissions,
    TrustScore,
    TrustThresholds,
    TrustWeights,
)
from openrelief.services.notifier import Notifier, NullNotifier
from openrelief.services.store import EmergencyStore

logger = get_logger(__name__)

# Every (action, outcome) pair must be present; see test_delta_table_is_exhaustive.
BASE_CHANGES: dict[tuple[ActionType, ActionOutcome], float] = {
    (ActionType.REPORT, ActionOutcome.SUCCESS): 0.05,
    (ActionType.REPORT, ActionOutcome.FAILURE): -0.10,
    (ActionType.REPORT, ActionOutcome.PENDING): 0.01,
    (ActionType.CONFIRM, ActionOutcome.SUCCESS): 0.03,
    (ActionType.CONFIRM, ActionOutcome.FAILURE): -0.05,
    (ActionType.CONFIRM, ActionOutcome.PENDING): 0.005,
    (ActionType.DISPUTE, ActionOutcome.SUCCESS): 0.04,
    (ActionType.DISPUTE, ActionOutcome.FAILURE): -0.08,
    (ActionType.DISPUTE, ActionOutcome.PENDING): 0.008,
}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if math.isnan(value):
        return low
    return max(low, min(high, value))


def normalize_factors(factors: TrustFactors) -> dict[str, float]:
    """Map every scored factor onto [0, 1]."""
    response_time = factors.response_time
    return {
        "reporting_accuracy": _clamp(factors.reporting_accuracy),
        "confirmation_accuracy": _clamp(factors.confirmation_accuracy),
        "dispute_accuracy": _clamp(factors.dispute_accuracy),
        # 0 minutes -> 1.0, 60+ minutes -> 0.0
        "response_time": 0.0 if math.isnan(response_time) else _clamp(1 - response_time / 60),
        "location_accuracy": _clamp(factors.location_accuracy),
        # 10+ contributions per week saturate
        "contribution_frequency": _clamp(factors.contribution_frequency / 10),
        "community_endorsement": _clamp(factors.community_endorsement),
        "penalty_score": _clamp(factors.penalty_score),
    }


def calculate_trust_score(
    factors: TrustFactors, weights: TrustWeights | None = None
) -> TrustCalculation:
    """
    Calculate a trust score and the confidence in it.

    Pure and deterministic. Confidence averages data completeness (share of
    non-zero factors) with the consistency between reporting and
    confirmation accuracy.
    """
    weights = weights or TrustWeights()
    normalized = normalize_factors(factors)

    weighted_sum = (
        normalized["reporting_accuracy"] * weights.reporting_accuracy
        + normalized["confirmation_accuracy"] * weights.confirmation_accuracy
        + normalized["dispute_accuracy"] * weights.dispute_accuracy
        + normalized["response_time"] * weights.response_time
        + normalized["location_accuracy"] * weights.location_accuracy
        + normalized["contribution_frequency"] * weights.contribution_frequency
        + normalized["community_endorsement"] * weights.community_endorsement
        - normalized["penalty_score"] * weights.penalty_score
    )

    completeness = sum(1 for v in normalized.values() if v > 0) / len(normalized)
    consistency = 1 - abs(
        normalized["reporting_accuracy"] - normalized["confirmation_accuracy"]
    )

    return TrustCalculation(
        score=_clamp(weighted_sum),
        confidence=_clamp((completeness + consistency) / 2),
    )


def parse_action(action_type: ActionType | str) -> ActionType:
    try:
        return ActionType(action_type)
    except ValueError:
        raise InvalidActionKind("action type", action_type) from None


def parse_outcome(outcome: ActionOutcome | str) -> ActionOutcome:
    try:
        return ActionOutcome(outcome)
    except ValueError:
        raise InvalidActionKind("outcome", outcome) from None


def calculate_trust_change(
    action_type: ActionType,
    outcome: ActionOutcome,
    current_score: float,
    factors: TrustFactors,
    event_type: str | None = None,
    config: Settings = default_settings,
) -> float:
    """Signed score delta for one action, before clamping."""
    base_change = BASE_CHANGES[(action_type, outcome)]

    # Harder to climb at the top, faster to move at the bottom (both directions)
    if current_score > config.TRUST_HIGH_SCORE_CUTOFF:
        score_multiplier = config.TRUST_HIGH_SCORE_MULTIPLIER
    elif current_score < config.TRUST_LOW_SCORE_CUTOFF:
        score_multiplier = config.TRUST_LOW_SCORE_MULTIPLIER
    else:
        score_multiplier = 1.0

    expertise_multiplier = 1.0
    if action_type is ActionType.REPORT and factors.expertise_areas:
        if not config.TRUST_EXPERTISE_REQUIRES_MATCH or (
            event_type is not None and event_type in factors.expertise_areas
        ):
            expertise_multiplier = config.TRUST_EXPERTISE_MULTIPLIER

    return base_change * score_multiplier * expertise_multiplier


def apply_action_to_factors(
    factors: TrustFactors,
    action_type: ActionType,
    outcome: ActionOutcome,
    penalty_decay: float = 0.0,
) -> TrustFactors:
    """Return the factors adjusted for a settled action."""
    updated = factors.model_copy(deep=True)

    if action_type is ActionType.REPORT and outcome is ActionOutcome.SUCCESS:
        updated.reporting_accuracy = min(1.0, updated.reporting_accuracy + 0.02)
        updated.contribution_frequency = min(10.0, updated.contribution_frequency + 0.1)
    elif action_type is ActionType.REPORT and outcome is ActionOutcome.FAILURE:
        updated.reporting_accuracy = max(0.0, updated.reporting_accuracy - 0.05)
        updated.penalty_score = min(1.0, updated.penalty_score + 0.1)

    if outcome is ActionOutcome.SUCCESS and penalty_decay > 0:
        updated.penalty_score = max(0.0, updated.penalty_score - penalty_decay)

    return updated


def can_user_report(score: float | None, thresholds: TrustThresholds) -> bool:
    return score is not None and score >= thresholds.reporting


def can_user_confirm(score: float | None, thresholds: TrustThresholds) -> bool:
    return score is not None and score >= thresholds.confirming


def can_user_dispute(score: float | None, thresholds: TrustThresholds) -> bool:
    return score is not None and score >= thresholds.disputing


def is_high_trust_user(score: float | None, thresholds: TrustThresholds) -> bool:
    return score is not None and score >= thresholds.high_trust


def is_low_trust_user(score: float | None, thresholds: TrustThresholds) -> bool:
    return score is not None and score <= thresholds.low_trust


class TrustScoreEngine:
    """
    Stateful front for trust scoring.

    All state lives behind the injected store. Updates for one user are
    serialized; updates for different users run independently and never
    renormalize each other.
    """

    def __init__(
        self,
        store: EmergencyStore,
        notifier: Notifier | None = None,
        config: Settings = default_settings,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.config = config
        self.weights = TrustWeights.model_validate(config.TRUST_WEIGHTS)
        self.thresholds = TrustThresholds(
            reporting=config.THRESHOLD_REPORTING,
            confirming=config.THRESHOLD_CONFIRMING,
            disputing=config.THRESHOLD_DISPUTING,
            high_trust=config.THRESHOLD_HIGH_TRUST,
            low_trust=config.THRESHOLD_LOW_TRUST,
        )
        self.last_update_time: datetime | None = None
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks = KeyedLock()

    def calculate(self, factors: TrustFactors) -> TrustCalculation:
        return calculate_trust_score(factors, self.weights)

    def new_user_score(self, user_id: str, now: datetime) -> TrustScore:
        default = self.config.TRUST_DEFAULT_SCORE
        return TrustScore(
            user_id=user_id,
            score=default,
            previous_score=default,
            factors=TrustFactors(),
            last_updated=now,
        )

    async def get_user_score(self, user_id: str) -> TrustScore | None:
        return await self.store.get_trust_score(user_id)

    async def current_score(self, user_id: str | None) -> float:
        """Score used as a trust weight; unknown users get the default."""
        if user_id is None:
            return self.config.TRUST_DEFAULT_SCORE
        existing = await self.store.get_trust_score(user_id)
        return existing.score if existing else self.config.TRUST_DEFAULT_SCORE

    async def update_trust_for_action(
        self,
        user_id: str,
        event_id: str,
        action_type: ActionType | str,
        outcome: ActionOutcome | str,
        metadata: dict[str, Any] | None = None,
        *,
        event_type: str | None = None,
        now: datetime | None = None,
    ) -> TrustScore:
        """
        Apply one action/outcome pair to a user's trust.

        Args:
            user_id: Acting user
            event_id: Event the action refers to
            action_type: report, confirm or dispute
            outcome: success, failure or pending
            metadata: Free-form context stored on the history entry
            event_type: Event category, matched against expertise areas
            now: Action timestamp; the engine clock is used when omitted

        Returns:
            The updated trust score, its last history entry describing this action

        Raises:
            InvalidActionKind: unknown action type or outcome
        """
        action = parse_action(action_type)
        result = parse_outcome(outcome)
        now = now or self._clock()

        with log_context(user_id=user_id, event_id=event_id):
            async with self._locks.hold(user_id):
                current = await self.store.get_trust_score(user_id)
                if current is None:
                    current = self.new_user_score(user_id, now)

                change = calculate_trust_change(
                    action, result, current.score, current.factors, event_type, self.config
                )
                new_score = _clamp(current.score + change)

                entry = TrustHistoryEntry(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    event_id=event_id,
                    action_type=action,
                    outcome=result,
                    change=change,
                    previous_score=current.score,
                    new_score=new_score,
                    reason=f"{action.value} {result.value}",
                    timestamp=now,
                    metadata=metadata,
                )

                updated = current.model_copy(
                    update={
                        "previous_score": current.score,
                        "score": new_score,
                        "last_updated": now,
                        "factors": apply_action_to_factors(
                            current.factors, action, result, self.config.TRUST_PENALTY_DECAY
                        ),
                        "history": [*current.history, entry],
                    }
                )

                await self.store.put_trust_score(user_id, updated)
                await self.store.append_history(entry)
                self.last_update_time = now

            logger.info(
                f"Trust for user {user_id} changed {current.score:.3f} -> {new_score:.3f} "
                f"({action.value} {result.value} on event {event_id})"
            )
            await self.notifier.trust_score_changed(user_id, current.score, new_score, change)
            return updated

    async def update_trust_factors(
        self, user_id: str, factors: Mapping[str, Any]
    ) -> TrustScore | None:
        """Merge partial factors into a known user's and recompute the score."""
        now = self._clock()
        async with self._locks.hold(user_id):
            current = await self.store.get_trust_score(user_id)
            if current is None:
                return None

            merged = {
                **current.factors.model_dump(),
                **{k: v for k, v in factors.items() if v is not None},
            }
            updated_factors = TrustFactors.from_untrusted(merged)
            calculation = self.calculate(updated_factors)

            updated = current.model_copy(
                update={
                    "previous_score": current.score,
                    "score": calculation.score,
                    "factors": updated_factors,
                    "last_updated": now,
                }
            )
            await self.store.put_trust_score(user_id, updated)
            self.last_update_time = now
        return updated

    async def recalculate_score(self, user_id: str) -> TrustScore | None:
        """Recompute a known user's score from their stored factors."""
        now = self._clock()
        async with self._locks.hold(user_id):
            current = await self.store.get_trust_score(user_id)
            if current is None:
                return None

            calculation = self.calculate(current.factors)
            updated = current.model_copy(
                update={
                    "previous_score": current.score,
                    "score": calculation.score,
                    "last_updated": now,
                }
            )
            await self.store.put_trust_score(user_id, updated)
            self.last_update_time = now
        return updated

    async def get_history(self, user_id: str | None = None) -> list[TrustHistoryEntry]:
        return await self.store.list_history(user_id)

    async def clear_history(self, user_id: str | None = None) -> int:
        removed = await self.store.clear_history(user_id)
        logger.info(f"Cleared {removed} trust history entries")
        return removed

    async def permissions(self, user_id: str) -> TrustPermissions:
        existing = await self.store.get_trust_score(user_id)
        score = existing.score if existing else None
        return TrustPermissions(
            user_id=user_id,
            score=score,
            can_report=can_user_report(score, self.thresholds),
            can_confirm=can_user_confirm(score, self.thresholds),
            can_dispute=can_user_dispute(score, self.thresholds),
            is_high_trust=is_high_trust_user(score, self.thresholds),
            is_low_trust=is_low_trust_user(score, self.thresholds),
        )
