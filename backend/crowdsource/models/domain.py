"""
Crowdsource Engine - Engine Result Models

Plain dataclasses returned by the engine services. Routers and the command
webhook serialize these; nothing downstream recomputes them.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .db_models import LocationSource, ProblemStatus


# =============================================================================
# LOCATION
# =============================================================================

class LocationConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AccuracyClass(str, Enum):
    """Spatial agreement among a problem's verification points."""
    ACCURATE = "accurate"
    SPREAD_OUT = "spread out"
    INSUFFICIENT_DATA = "insufficient data"


@dataclass(frozen=True)
class LiveCoordinates:
    """A GPS fix shared from the reporter's device."""
    latitude: float
    longitude: float
    description: Optional[str] = None


@dataclass(frozen=True)
class FreeTextLocation:
    """A place name typed by the reporter."""
    text: str


@dataclass
class LocationResult:
    confidence: LocationConfidence
    source: Optional[LocationSource] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    normalized_text: Optional[str] = None
    details: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.confidence == LocationConfidence.HIGH

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def empty(cls) -> "LocationResult":
        """No location supplied at all."""
        return cls(confidence=LocationConfidence.LOW)


@dataclass(frozen=True)
class BoundaryFeature:
    """Immutable administrative boundary (district or ward)."""
    id: str
    name: str
    parent_name: str
    province_name: str
    geometry_type: str
    coordinates: Any

    def to_properties(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "parentName": self.parent_name,
            "provinceName": self.province_name,
        }


# =============================================================================
# CONSENSUS
# =============================================================================

@dataclass
class UpvoteResult:
    problem_id: int
    accepted: bool
    new_count: int
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SpatialAccuracy:
    max_spread_m: Optional[float]
    classification: AccuracyClass
    point_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_spread_m": round(self.max_spread_m, 1) if self.max_spread_m is not None else None,
            "classification": self.classification.value,
            "point_count": self.point_count,
        }


@dataclass
class VerifyResult:
    problem_id: int
    accepted: bool
    new_count: int
    threshold_reached: bool
    threshold: int
    location_verified: bool
    accuracy: Optional[SpatialAccuracy] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "problem_id": self.problem_id,
            "accepted": self.accepted,
            "new_count": self.new_count,
            "threshold_reached": self.threshold_reached,
            "threshold": self.threshold,
            "location_verified": self.location_verified,
        }
        data["accuracy"] = self.accuracy.to_dict() if self.accuracy else None
        return data


# =============================================================================
# VOLUNTEER RESOLUTION
# =============================================================================

@dataclass
class OfferResult:
    problem_id: int
    accepted: bool
    status: ProblemStatus
    already_offered: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "problem_id": self.problem_id,
            "accepted": self.accepted,
            "already_offered": self.already_offered,
            "status": self.status.value,
        }


@dataclass
class ProofResult:
    problem_id: int
    status: ProblemStatus
    resolved_by: str
    resolved_at: datetime
    proof_urls: List[str]
    notification_queued: bool
    supporters: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "problem_id": self.problem_id,
            "status": self.status.value,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat(),
            "proof_urls": list(self.proof_urls),
            "notification_queued": self.notification_queued,
            "supporters": self.supporters,
        }


@dataclass
class FanoutReport:
    problem_id: int
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_invalid: int = 0
    failed_recipients: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# LEADERBOARD
# =============================================================================

@dataclass
class RankedEntry:
    rank: int
    identity: str
    problems_reported: int
    upvotes_given: int
    verifications_given: int
    responses_offered: int
    resolutions_completed: int
    total_contributions: int
    score: int
    badge: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# SEVERITY
# =============================================================================

@dataclass
class SeverityBreakdown:
    upvote_score: float
    age_score: float
    category_score: float
    verification_score: float
    status_multiplier: float
    total_score: float
    level: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
