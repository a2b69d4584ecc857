"""
Crowdsource Engine

Single entrypoint for the operations the transport/front end calls:
report, upvote, verify, offer help, submit proof, leaderboard, ward lookup.
Wires the per-request services (DB session) to the process-wide
collaborators (resolver, spatial index, notifier, image store).
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..config import SPATIAL_ACCURACY_RADIUS_M, VERIFICATION_THRESHOLD
from ..models.db_models import ProblemCategory, ProblemDB
from ..models.domain import (
    BoundaryFeature, FreeTextLocation, LiveCoordinates, OfferResult, ProofResult,
    RankedEntry, UpvoteResult, VerifyResult,
)
from .geo.location_resolver import LocationResolver
from .geo.spatial_index import SpatialIndex
from .leaderboard.aggregator import LeaderboardAggregator
from .problems.consensus import ConsensusEngine
from .problems.queries import ProblemQueryService
from .problems.registry import ProblemRegistry
from .problems.resolution import VolunteerResolutionWorkflow
from .storage.image_store import ImageStore
from .validation import require_coordinates


logger = logging.getLogger(__name__)


class CrowdsourceEngine:
    """
    Usage:
        engine = CrowdsourceEngine(db, resolver, spatial_index, notifier=worker)
        problem = engine.report_problem("+23276000000", "Broken pipe", "Leaking since Monday")
        engine.upvote(problem.id, "+23276111111")
    """

    def __init__(
        self,
        db: Session,
        resolver: Optional[LocationResolver] = None,
        spatial_index: Optional[SpatialIndex] = None,
        notifier=None,
        image_store: Optional[ImageStore] = None,
        threshold: int = VERIFICATION_THRESHOLD,
        radius_m: float = SPATIAL_ACCURACY_RADIUS_M,
    ):
        self.db = db
        self.resolver = resolver
        self.spatial_index = spatial_index
        self.registry = ProblemRegistry(db, spatial_index)
        self.consensus = ConsensusEngine(db, self.registry, threshold=threshold, radius_m=radius_m)
        self.workflow = VolunteerResolutionWorkflow(db, self.registry, notifier=notifier, image_store=image_store)
        self.queries = ProblemQueryService(db, spatial_index)
        self.leaderboard = LeaderboardAggregator(db)

    def report_problem(
        self,
        reporter_identity: str,
        title: str,
        description: str,
        live: Optional[LiveCoordinates] = None,
        text: Optional[FreeTextLocation] = None,
        category: ProblemCategory = ProblemCategory.OTHER,
    ) -> ProblemDB:
        if self.resolver is not None:
            location = self.resolver.resolve(live=live, text=text)
        else:
            location = None
        return self.registry.create(reporter_identity, title, description, location, category)

    def upvote(self, problem_id: int, voter_identity: str) -> UpvoteResult:
        return self.consensus.upvote(problem_id, voter_identity)

    def verify(
        self,
        problem_id: int,
        verifier_identity: str,
        latitude: float,
        longitude: float,
        image_urls: Optional[List[str]] = None,
    ) -> VerifyResult:
        return self.consensus.verify(problem_id, verifier_identity, latitude, longitude, image_urls)

    def offer_help(self, problem_id: int, volunteer_identity: str, message: Optional[str] = None) -> OfferResult:
        return self.workflow.offer_help(problem_id, volunteer_identity, message)

    def submit_proof(
        self,
        problem_id: int,
        volunteer_identity: str,
        proof_ref: str,
        notes: Optional[str] = None,
    ) -> ProofResult:
        return self.workflow.submit_proof(problem_id, volunteer_identity, proof_ref, notes)

    def get_leaderboard(self, metric: str = "all", limit: int = 10) -> List[RankedEntry]:
        return self.leaderboard.get_leaderboard(metric, limit)

    def find_ward(self, latitude: float, longitude: float) -> Optional[BoundaryFeature]:
        latitude, longitude = require_coordinates(latitude, longitude)
        if self.spatial_index is None:
            return None
        return self.spatial_index.find_ward(latitude, longitude)

    def find_district(self, latitude: float, longitude: float) -> Optional[BoundaryFeature]:
        latitude, longitude = require_coordinates(latitude, longitude)
        if self.spatial_index is None:
            return None
        return self.spatial_index.find_district(latitude, longitude)
