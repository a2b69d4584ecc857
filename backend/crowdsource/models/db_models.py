"""
Crowdsource Engine - SQLAlchemy ORM Models
Persistent storage for problems and the community actions taken on them
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey,
    Enum as SQLEnum, Boolean, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class ProblemStatus(str, Enum):
    """Lifecycle states of a problem."""
    REPORTED = "REPORTED"
    IN_REVIEW = "IN_REVIEW"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class LocationSource(str, Enum):
    """Where a problem's location came from."""
    LIVE_SHARE = "live-share"
    TEXT_GEOCODED = "text-geocoded"
    MANUAL = "manual"


class ProblemCategory(str, Enum):
    INFRASTRUCTURE = "infrastructure"
    SANITATION = "sanitation"
    UTILITIES = "utilities"
    SAFETY = "safety"
    OTHER = "other"


class TimelineEventType(str, Enum):
    """Event types written to the append-only problem timeline."""
    REPORTED = "REPORTED"
    UPVOTED = "UPVOTED"
    VERIFIED = "VERIFIED"
    HELP_OFFERED = "HELP_OFFERED"
    STATUS_CHANGED = "STATUS_CHANGED"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"
    LOCATION_UPDATED = "LOCATION_UPDATED"


class OfferStatus(str, Enum):
    OFFERED = "OFFERED"
    COMPLETED = "COMPLETED"


# =============================================================================
# PROBLEMS
# =============================================================================

class ProblemDB(Base):
    """A reported community problem."""
    __tablename__ = "problems"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reporter_identity = Column(String(64), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    raw_message = Column(Text, nullable=False)  # Full description from the reporter
    category = Column(SQLEnum(ProblemCategory), nullable=False, default=ProblemCategory.OTHER)

    # ==========================================================================
    # LOCATION - set by the Location Resolver, independent of community checks
    # ==========================================================================
    location_text = Column(String(500), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    location_verified = Column(Boolean, nullable=False, default=False)
    location_source = Column(SQLEnum(LocationSource), nullable=True)
    location_confidence = Column(String(10), nullable=True)  # high / medium / low

    # Administrative boundary assignment (Spatial Index)
    ward_id = Column(String(50), nullable=True, index=True)
    ward_name = Column(String(255), nullable=True)
    district_name = Column(String(255), nullable=True)

    status = Column(SQLEnum(ProblemStatus), nullable=False, default=ProblemStatus.REPORTED, index=True)

    # Denormalized counters - must equal the row counts of the child tables
    upvote_count = Column(Integer, nullable=False, default=0)
    verification_count = Column(Integer, nullable=False, default=0)

    # ==========================================================================
    # RESOLUTION - immutable once set
    # ==========================================================================
    resolved_by = Column(String(64), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolution_proof = Column(JSON, nullable=False, default=list)  # Ordered image references
    resolution_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    upvotes = relationship("UpvoteDB", back_populates="problem", order_by="UpvoteDB.created_at")
    verifications = relationship("VerificationDB", back_populates="problem", order_by="VerificationDB.created_at")
    responses = relationship("ResolutionOfferDB", back_populates="problem", order_by="ResolutionOfferDB.created_at")
    timeline = relationship("TimelineEventDB", back_populates="problem", order_by="TimelineEventDB.created_at")


class UpvoteDB(Base):
    """One supporter of a problem. Append-only."""
    __tablename__ = "problem_upvotes"
    __table_args__ = (
        UniqueConstraint("problem_id", "voter_identity", name="uq_upvote_problem_voter"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    problem_id = Column(Integer, ForeignKey("problems.id"), nullable=False, index=True)
    voter_identity = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    problem = relationship("ProblemDB", back_populates="upvotes")


class VerificationDB(Base):
    """An on-site location verification with the verifier's GPS fix. Append-only."""
    __tablename__ = "problem_verifications"
    __table_args__ = (
        UniqueConstraint("problem_id", "verifier_identity", name="uq_verification_problem_verifier"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    problem_id = Column(Integer, ForeignKey("problems.id"), nullable=False, index=True)
    verifier_identity = Column(String(64), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    image_urls = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)

    problem = relationship("ProblemDB", back_populates="verifications")


class ResolutionOfferDB(Base):
    """A volunteer's offer to fix a problem, later carrying the proof."""
    __tablename__ = "problem_responses"
    __table_args__ = (
        UniqueConstraint("problem_id", "volunteer_identity", name="uq_response_problem_volunteer"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    problem_id = Column(Integer, ForeignKey("problems.id"), nullable=False, index=True)
    volunteer_identity = Column(String(64), nullable=False, index=True)
    message = Column(Text, nullable=False, default="Volunteer offered to help")
    status = Column(SQLEnum(OfferStatus), nullable=False, default=OfferStatus.OFFERED)
    resolved_problem = Column(Boolean, nullable=False, default=False)  # accepted-proof flag
    proof_images = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    problem = relationship("ProblemDB", back_populates="responses")


class TimelineEventDB(Base):
    """Append-only audit/history log. Rows are never updated or deleted."""
    __tablename__ = "problem_timeline_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    problem_id = Column(Integer, ForeignKey("problems.id"), nullable=False, index=True)
    event_type = Column(SQLEnum(TimelineEventType), nullable=False)
    actor_identity = Column(String(64), nullable=True)
    event_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    problem = relationship("ProblemDB", back_populates="timeline")


class MediaDB(Base):
    """Uploaded image reference, optionally linked to a problem."""
    __tablename__ = "media"

    id = Column(Integer, primary_key=True, autoincrement=True)
    problem_id = Column(Integer, ForeignKey("problems.id"), nullable=True, index=True)
    url = Column(String(1000), nullable=False)
    storage_key = Column(String(255), nullable=True)
    mime_type = Column(String(100), nullable=False, default="image/jpeg")
    size = Column(Integer, nullable=True)
    uploaded_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


Index("idx_problem_status_upvotes", ProblemDB.status, ProblemDB.upvote_count)
