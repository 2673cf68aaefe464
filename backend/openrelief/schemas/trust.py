"""
Trust scoring schemas.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

RATIO_FACTORS = (
    "reporting_accuracy",
    "confirmation_accuracy",
    "dispute_accuracy",
    "location_accuracy",
    "community_endorsement",
    "penalty_score",
)
# Unknown response time counts as the slowest bucket, which normalizes to 0
UNKNOWN_RESPONSE_MINUTES = 60.0


class ActionType(str, Enum):
    """Trust-affecting user actions."""

    REPORT = "report"
    CONFIRM = "confirm"
    DISPUTE = "dispute"


class ActionOutcome(str, Enum):
    """Outcome of a trust-affecting action once the event is settled."""

    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


def _coerce_number(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return default if math.isnan(number) else number


class TrustFactors(BaseModel):
    """Behavioral factors feeding a user's trust score."""

    reporting_accuracy: float = 0.5
    confirmation_accuracy: float = 0.5
    dispute_accuracy: float = 0.5
    response_time: float = 30.0  # minutes
    location_accuracy: float = 0.5
    contribution_frequency: float = 0.0  # contributions per week
    community_endorsement: float = 0.5
    penalty_score: float = 0.0
    expertise_areas: set[str] = Field(default_factory=set)

    @classmethod
    def from_untrusted(cls, data: Mapping[str, Any] | None) -> TrustFactors:
        """
        Build factors from loosely-typed input without raising.

        Missing, non-numeric and NaN values normalize to 0, ratios are
        clamped to [0, 1] and raw values (minutes, per-week counts) to >= 0.
        """
        data = data if isinstance(data, Mapping) else {}
        values: dict[str, Any] = {}
        for name in RATIO_FACTORS:
            values[name] = max(0.0, min(1.0, _coerce_number(data.get(name))))
        values["response_time"] = max(
            0.0, _coerce_number(data.get("response_time"), UNKNOWN_RESPONSE_MINUTES)
        )
        values["contribution_frequency"] = max(
            0.0, _coerce_number(data.get("contribution_frequency"))
        )

        areas = data.get("expertise_areas")
        if isinstance(areas, str):
            areas = [areas]
        try:
            values["expertise_areas"] = {str(a) for a in areas or () if a}
        except TypeError:
            values["expertise_areas"] = set()
        return cls(**values)


class TrustWeights(BaseModel):
    """Relative weight of each normalized factor; penalty is subtracted."""

    reporting_accuracy: float = 0.25
    confirmation_accuracy: float = 0.20
    dispute_accuracy: float = 0.15
    response_time: float = 0.10
    location_accuracy: float = 0.10
    contribution_frequency: float = 0.10
    community_endorsement: float = 0.05
    penalty_score: float = 0.05


class TrustThresholds(BaseModel):
    """Minimum scores gating user actions."""

    reporting: float = 0.3
    confirming: float = 0.4
    disputing: float = 0.5
    high_trust: float = 0.8
    low_trust: float = 0.2


class TrustCalculation(BaseModel):
    """Result of a pure trust score calculation."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)


class TrustHistoryEntry(BaseModel):
    """Immutable audit record of one trust-affecting action."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    event_id: str
    action_type: ActionType
    outcome: ActionOutcome
    change: float
    previous_score: float
    new_score: float
    reason: str | None = None
    timestamp: datetime
    metadata: dict[str, Any] | None = None


class TrustScore(BaseModel):
    """Current trust state of a user."""

    user_id: str
    score: float = Field(..., ge=0.0, le=1.0)
    previous_score: float = Field(..., ge=0.0, le=1.0)
    factors: TrustFactors = Field(default_factory=TrustFactors)
    last_updated: datetime
    history: list[TrustHistoryEntry] = Field(default_factory=list)


class TrustActionRequest(BaseModel):
    """Schema for applying a trust-affecting action."""

    event_id: str
    action_type: str
    outcome: str
    event_type: str | None = None
    metadata: dict[str, Any] | None = None


class TrustPermissions(BaseModel):
    """Which actions a user's current score allows."""

    user_id: str
    score: float | None
    can_report: bool
    can_confirm: bool
    can_dispute: bool
    is_high_trust: bool
    is_low_trust: bool
