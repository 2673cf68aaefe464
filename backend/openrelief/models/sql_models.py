"""
SQLAlchemy models for PostgreSQL database.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from openrelief.core.database import Base


class TrustScoreRecord(Base):
    """Current trust state per user; history lives in trust_history."""

    __tablename__ = "trust_scores"

    user_id = Column(String(255), primary_key=True)
    score = Column(Float, nullable=False, default=0.5)
    previous_score = Column(Float, nullable=False, default=0.5)
    factors = Column(JSON, nullable=False)  # TrustFactors, expertise as a list
    last_updated = Column(DateTime(timezone=True), nullable=False)


class TrustHistoryRecord(Base):
    """Append-only audit log of trust changes."""

    __tablename__ = "trust_history"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # application order
    entry_id = Column(String(36), nullable=False, unique=True)
    user_id = Column(String(255), nullable=False, index=True)
    event_id = Column(String(255), nullable=False, index=True)
    action_type = Column(String(20), nullable=False)  # report, confirm, dispute
    outcome = Column(String(20), nullable=False)  # success, failure, pending
    change = Column(Float, nullable=False)
    previous_score = Column(Float, nullable=False)
    new_score = Column(Float, nullable=False)
    reason = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    extra = Column("metadata", JSON, nullable=True)


class EmergencyEventRecord(Base):
    """Reported emergency and its lifecycle state."""

    __tablename__ = "emergency_events"

    id = Column(String(36), primary_key=True)
    type = Column(String(100), nullable=False, index=True)
    severity = Column(String(20), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(500), nullable=True)
    reported_by = Column(String(255), nullable=True, index=True)
    reported_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, index=True)
    trust_weight = Column(Float, default=0.0)
    updates = Column(JSON, nullable=False, default=list)
    confirmation_count = Column(Integer, default=0)
    dispute_count = Column(Integer, default=0)
    outcome = Column(String(20), nullable=True)  # confirmed, refuted
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    closure_reason = Column(Text, nullable=True)
    final_report = Column(JSON, nullable=True)
    data_integrity_flag = Column(Boolean, default=False)
    review_required = Column(Boolean, default=False)
    integrity_issues = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class EventVoteRecord(Base):
    """One vote per user and event; re-voting overwrites the row."""

    __tablename__ = "event_votes"

    event_id = Column(String(36), primary_key=True)
    user_id = Column(String(255), primary_key=True)
    vote_type = Column(String(20), nullable=False)
    trust_weight = Column(Float, nullable=False, default=0.0)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    distance_from_event = Column(Float, nullable=True)  # meters


class VoterProfileRecord(Base):
    __tablename__ = "voter_profiles"

    user_id = Column(String(255), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class EndorsementRecord(Base):
    __tablename__ = "endorsements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    endorser_id = Column(String(255), nullable=False, index=True)
    endorsed_id = Column(String(255), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=True)
