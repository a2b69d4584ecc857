"""
Consensus Engine

Per-identity uniqueness for upvotes and location verifications, the
verification threshold, and the spatial-accuracy signal.

Duplicate submissions are no-ops returned as normal results, never errors.
Uniqueness is enforced by the store: a racing second insert hits the unique
constraint and is reported as accepted=False.
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import SPATIAL_ACCURACY_RADIUS_M, VERIFICATION_THRESHOLD
from ...models.db_models import (
    ProblemDB, TimelineEventType, UpvoteDB, VerificationDB,
)
from ...models.domain import (
    AccuracyClass, SpatialAccuracy, UpvoteResult, VerifyResult,
)
from ..geo.distance import max_pairwise_distance_m
from ..validation import require_coordinates, require_identity
from .registry import ProblemRegistry


logger = logging.getLogger(__name__)


def classify_spread(points: List[Tuple[float, float]], radius_m: float) -> SpatialAccuracy:
    """Classify how tightly a set of (lat, lon) points agree."""
    spread = max_pairwise_distance_m(points)
    if spread is None:
        return SpatialAccuracy(max_spread_m=None, classification=AccuracyClass.INSUFFICIENT_DATA, point_count=len(points))
    classification = AccuracyClass.ACCURATE if spread < radius_m else AccuracyClass.SPREAD_OUT
    return SpatialAccuracy(max_spread_m=spread, classification=classification, point_count=len(points))


class ConsensusEngine:
    """
    Usage:
        engine = ConsensusEngine(db, registry)
        result = engine.verify(42, "+23276111111", 8.4606, -12.2684)
    """

    def __init__(
        self,
        db: Session,
        registry: ProblemRegistry,
        threshold: int = VERIFICATION_THRESHOLD,
        radius_m: float = SPATIAL_ACCURACY_RADIUS_M,
    ):
        self.db = db
        self.registry = registry
        self.threshold = threshold
        self.radius_m = radius_m

    # =========================================================================
    # UPVOTES
    # =========================================================================

    def has_upvoted(self, problem_id: int, voter_identity: str) -> bool:
        return self.db.query(UpvoteDB.id).filter(
            UpvoteDB.problem_id == problem_id,
            UpvoteDB.voter_identity == voter_identity,
        ).first() is not None

    def upvote(self, problem_id: int, voter_identity: str) -> UpvoteResult:
        voter_identity = require_identity(voter_identity, "voter identity")
        problem = self.registry.get(problem_id)

        if self.has_upvoted(problem_id, voter_identity):
            logger.info(f"{voter_identity} already upvoted problem {problem_id}")
            return UpvoteResult(problem_id, accepted=False, new_count=problem.upvote_count, title=problem.title)

        try:
            with self.registry.transaction():
                self.db.add(UpvoteDB(problem_id=problem_id, voter_identity=voter_identity))
                self.db.flush()
                new_count = self.registry.increment_upvotes(problem_id)
                self.registry.timeline.record(
                    problem_id,
                    TimelineEventType.UPVOTED,
                    actor_identity=voter_identity,
                    metadata={"new_count": new_count},
                )
        except IntegrityError:
            # Lost the race against a concurrent upvote from the same identity
            problem = self.registry.get(problem_id)
            self.db.refresh(problem)
            logger.info(f"Concurrent duplicate upvote on problem {problem_id} by {voter_identity}")
            return UpvoteResult(problem_id, accepted=False, new_count=problem.upvote_count, title=problem.title)

        self.db.refresh(problem)
        logger.info(f"Upvote recorded on problem {problem_id} by {voter_identity} (count={new_count})")
        return UpvoteResult(problem_id, accepted=True, new_count=new_count, title=problem.title)

    # =========================================================================
    # VERIFICATIONS
    # =========================================================================

    def has_verified(self, problem_id: int, verifier_identity: str) -> bool:
        return self.db.query(VerificationDB.id).filter(
            VerificationDB.problem_id == problem_id,
            VerificationDB.verifier_identity == verifier_identity,
        ).first() is not None

    def verify(
        self,
        problem_id: int,
        verifier_identity: str,
        latitude: float,
        longitude: float,
        image_urls: Optional[List[str]] = None,
    ) -> VerifyResult:
        verifier_identity = require_identity(verifier_identity, "verifier identity")
        latitude, longitude = require_coordinates(latitude, longitude)
        problem = self.registry.get(problem_id)

        if self.has_verified(problem_id, verifier_identity):
            logger.info(f"{verifier_identity} already verified problem {problem_id}")
            return self._verify_result(problem, accepted=False)

        try:
            with self.registry.transaction():
                self.db.add(VerificationDB(
                    problem_id=problem_id,
                    verifier_identity=verifier_identity,
                    latitude=latitude,
                    longitude=longitude,
                    image_urls=list(image_urls or []),
                ))
                self.db.flush()
                new_count = self.registry.increment_verifications(problem_id)
                self.db.refresh(problem)

                threshold_reached = new_count >= self.threshold
                if threshold_reached:
                    self.registry.mark_location_verified(problem)

                self.registry.timeline.record(
                    problem_id,
                    TimelineEventType.VERIFIED,
                    actor_identity=verifier_identity,
                    metadata={
                        "latitude": latitude,
                        "longitude": longitude,
                        "new_count": new_count,
                        "threshold_reached": threshold_reached,
                    },
                )
        except IntegrityError:
            problem = self.registry.get(problem_id)
            self.db.refresh(problem)
            logger.info(f"Concurrent duplicate verification on problem {problem_id} by {verifier_identity}")
            return self._verify_result(problem, accepted=False)

        self.db.refresh(problem)
        if new_count == self.threshold:
            logger.info(f"Problem {problem_id} reached verification threshold ({self.threshold})")
        logger.info(f"Verification recorded on problem {problem_id} by {verifier_identity} (count={new_count})")
        return self._verify_result(problem, accepted=True)

    def _verify_result(self, problem: ProblemDB, accepted: bool) -> VerifyResult:
        return VerifyResult(
            problem_id=problem.id,
            accepted=accepted,
            new_count=problem.verification_count,
            threshold_reached=problem.verification_count >= self.threshold,
            threshold=self.threshold,
            location_verified=problem.location_verified,
            accuracy=self.spatial_accuracy(problem.id),
        )

    # =========================================================================
    # SPATIAL ACCURACY
    # =========================================================================

    def verification_points(self, problem_id: int) -> List[Tuple[float, float]]:
        """All verifier points plus the originally reported point, if any."""
        problem = self.registry.get(problem_id)
        rows = (
            self.db.query(VerificationDB.latitude, VerificationDB.longitude)
            .filter(VerificationDB.problem_id == problem_id)
            .order_by(VerificationDB.id)
            .all()
        )
        points = [(lat, lon) for lat, lon in rows]
        if problem.latitude is not None and problem.longitude is not None:
            points.append((problem.latitude, problem.longitude))
        return points

    def spatial_accuracy(self, problem_id: int) -> SpatialAccuracy:
        """Display signal only; never gates a state transition."""
        return classify_spread(self.verification_points(problem_id), self.radius_m)
