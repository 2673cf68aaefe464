"""
Consensus result schemas.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from openrelief.schemas.event import EmergencyEvent


class ConsensusVerdict(str, Enum):
    CONFIRM = "confirm"
    DISPUTE = "dispute"
    UNDECIDED = "undecided"


class ConsensusResult(BaseModel):
    """Trust-weighted verdict over the votes of one event. Never persisted."""

    event_id: str | None = None
    consensus: ConsensusVerdict = ConsensusVerdict.UNDECIDED
    confidence: float = Field(default=0.1, ge=0.0, le=1.0)
    weighted_confirm_score: float = 0.0
    weighted_dispute_score: float = 0.0
    distance_adjusted_confirm_score: float = 0.0
    distance_adjusted_dispute_score: float = 0.0
    total_votes: int = 0
    confirm_votes: int = 0
    dispute_votes: int = 0
    participants: list[str] = Field(default_factory=list)
    anomalies: list[str] = Field(default_factory=list)


class VoteOutcome(BaseModel):
    """Event state and verdict after a vote was recorded."""

    event: EmergencyEvent
    consensus: ConsensusResult
    transitioned: bool = False
