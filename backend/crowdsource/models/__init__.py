"""Crowdsource Engine - Data Models"""
from .db_models import (
    # Enums
    ProblemStatus, LocationSource, ProblemCategory, TimelineEventType, OfferStatus,
    # Tables
    ProblemDB, UpvoteDB, VerificationDB, ResolutionOfferDB, TimelineEventDB, MediaDB,
)
from .domain import (
    LocationConfidence, AccuracyClass,
    LiveCoordinates, FreeTextLocation, LocationResult, BoundaryFeature,
    UpvoteResult, SpatialAccuracy, VerifyResult,
    OfferResult, ProofResult, FanoutReport,
    RankedEntry, SeverityBreakdown,
)

__all__ = [
    "ProblemStatus", "LocationSource", "ProblemCategory", "TimelineEventType", "OfferStatus",
    "ProblemDB", "UpvoteDB", "VerificationDB", "ResolutionOfferDB", "TimelineEventDB", "MediaDB",
    "LocationConfidence", "AccuracyClass",
    "LiveCoordinates", "FreeTextLocation", "LocationResult", "BoundaryFeature",
    "UpvoteResult", "SpatialAccuracy", "VerifyResult",
    "OfferResult", "ProofResult", "FanoutReport",
    "RankedEntry", "SeverityBreakdown",
]
