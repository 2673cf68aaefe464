"""
Vote and voter metadata schemas.
"""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, field_validator

from openrelief.schemas.event import Location


class VoteType(str, Enum):
    CONFIRM = "confirm"
    DISPUTE = "dispute"


class Vote(BaseModel):
    """One user's verdict on one event; later votes replace earlier ones."""

    user_id: str
    event_id: str
    vote_type: VoteType
    trust_weight: float = 0.0
    timestamp: datetime
    location: Location | None = None
    distance_from_event: float | None = None  # meters

    @field_validator("trust_weight", mode="before")
    @classmethod
    def normalize_trust_weight(cls, v: Any) -> float:
        try:
            weight = float(v)
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(weight) or weight < 0.0:
            return 0.0
        return min(1.0, weight)

    @field_validator("distance_from_event", mode="before")
    @classmethod
    def drop_invalid_distance(cls, v: Any) -> float | None:
        if v is None:
            return None
        try:
            distance = float(v)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(distance) or distance < 0.0:
            return None
        return distance


class VoterProfile(BaseModel):
    """Account metadata consulted by the Sybil detector."""

    user_id: str
    created_at: datetime


class Endorsement(BaseModel):
    """Directed endorsement of one user by another."""

    endorser_id: str
    endorsed_id: str
    timestamp: datetime | None = None


class VoteRequest(BaseModel):
    """Schema for casting a vote."""

    user_id: str
    vote_type: VoteType
    latitude: float | None = None
    longitude: float | None = None
