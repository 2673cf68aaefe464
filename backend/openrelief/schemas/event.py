"""
Emergency event schemas.
"""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EventStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RESOLVED = "resolved"
    CLOSED = "closed"


class EventOutcome(str, Enum):
    """Settled truth of a report, fixed at the first consensus transition."""

    CONFIRMED = "confirmed"
    REFUTED = "refuted"


class UpdateKind(str, Enum):
    STATUS = "status"
    RESOURCE = "resource"
    CASUALTY = "casualty"
    NOTE = "note"


class Location(BaseModel):
    """Geographic coordinate pair; range is checked by callers, not here."""

    latitude: float
    longitude: float

    @property
    def is_valid(self) -> bool:
        return (
            math.isfinite(self.latitude)
            and math.isfinite(self.longitude)
            and -90.0 <= self.latitude <= 90.0
            and -180.0 <= self.longitude <= 180.0
        )


class EventUpdate(BaseModel):
    """Free-form update attached to an event."""

    kind: UpdateKind = UpdateKind.NOTE
    message: str
    author_id: str | None = None
    timestamp: datetime
    payload: dict[str, Any] | None = None


class FinalReport(BaseModel):
    """Close-out report supplied when an active event is resolved."""

    casualties: int = Field(default=0, ge=0)
    resources_used: list[str] = Field(default_factory=list)
    response_time_minutes: float | None = Field(default=None, ge=0.0)
    notes: str | None = None


class EmergencyEvent(BaseModel):
    """A reported incident and its lifecycle state."""

    id: str
    type: str
    severity: Severity
    title: str
    description: str | None = None
    location: Location
    address: str | None = None
    reported_by: str | None
    reported_at: datetime
    status: EventStatus = EventStatus.PENDING
    trust_weight: float = 0.0
    updates: list[EventUpdate] = Field(default_factory=list)

    confirmation_count: int = 0
    dispute_count: int = 0
    outcome: EventOutcome | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    closure_reason: str | None = None
    final_report: FinalReport | None = None

    data_integrity_flag: bool = False
    review_required: bool = False
    integrity_issues: list[str] = Field(default_factory=list)


class EventReportRequest(BaseModel):
    """Schema for reporting a new emergency."""

    reporter_id: str | None
    type: str
    severity: str
    title: str = Field(..., max_length=500)
    description: str | None = None
    latitude: Any = None
    longitude: Any = None
    address: str | None = None


class EventUpdateRequest(BaseModel):
    """Schema for appending an update record."""

    kind: UpdateKind = UpdateKind.NOTE
    message: str
    author_id: str | None = None
    payload: dict[str, Any] | None = None


class EventResolveRequest(BaseModel):
    resolver_id: str
    final_report: FinalReport = Field(default_factory=FinalReport)


class EventCloseRequest(BaseModel):
    reason: str = "closed"


class ArchivalStatus(BaseModel):
    event_id: str
    eligible: bool
    retention_days: int


class ExpirationResult(BaseModel):
    expired_event_ids: list[str]
