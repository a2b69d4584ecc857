"""
Volunteer Resolution Workflow

Enforces offer -> proof -> resolve:
1. offer_help creates a ResolutionOffer and moves the problem to IN_PROGRESS
2. submit_proof requires that offer, resolves the problem exactly once and
   hands the fanout off to the notifier

Notification runs after the resolution commits; its outcome never changes
the resolution.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import (
    OfferStatus, ProblemDB, ProblemStatus, ResolutionOfferDB, TimelineEventType,
    UpvoteDB, VerificationDB,
)
from ...models.domain import OfferResult, ProofResult
from ..errors import (
    AlreadyResolvedError, NoHelpOfferError, PreconditionError, ValidationError,
)
from ..storage.image_store import ImageStore, build_filename, decode_image_payload, is_remote_url
from ..validation import require_identity, require_text
from .registry import ProblemRegistry


logger = logging.getLogger(__name__)

DEFAULT_OFFER_MESSAGE = "Volunteer offered to help"


class VolunteerResolutionWorkflow:
    """
    Args:
        notifier: anything with enqueue(problem_id, proof_ref) -> bool,
            normally the FanoutWorker. None disables notifications.
        image_store: used only by submit_proof_image.
    """

    def __init__(
        self,
        db: Session,
        registry: ProblemRegistry,
        notifier=None,
        image_store: Optional[ImageStore] = None,
    ):
        self.db = db
        self.registry = registry
        self.notifier = notifier
        self.image_store = image_store

    def get_offer(self, problem_id: int, volunteer_identity: str) -> Optional[ResolutionOfferDB]:
        return self.db.query(ResolutionOfferDB).filter(
            ResolutionOfferDB.problem_id == problem_id,
            ResolutionOfferDB.volunteer_identity == volunteer_identity,
        ).first()

    # =========================================================================
    # OFFER HELP
    # =========================================================================

    def offer_help(self, problem_id: int, volunteer_identity: str, message: Optional[str] = None) -> OfferResult:
        volunteer_identity = require_identity(volunteer_identity, "volunteer identity")
        problem = self.registry.get(problem_id)

        if problem.status == ProblemStatus.RESOLVED:
            raise AlreadyResolvedError(problem_id, problem.resolved_by)
        if problem.status == ProblemStatus.REJECTED:
            raise PreconditionError(f"Problem #{problem_id} was rejected and is not accepting help")

        if self.get_offer(problem_id, volunteer_identity) is not None:
            logger.info(f"{volunteer_identity} already offered help on problem {problem_id}")
            return OfferResult(problem_id, accepted=False, status=problem.status, already_offered=True)

        message = (message or "").strip() or DEFAULT_OFFER_MESSAGE
        try:
            with self.registry.transaction():
                self.db.add(ResolutionOfferDB(
                    problem_id=problem_id,
                    volunteer_identity=volunteer_identity,
                    message=message,
                    status=OfferStatus.OFFERED,
                    resolved_problem=False,
                    proof_images=[],
                ))
                self.db.flush()
                self.registry.timeline.record(
                    problem_id,
                    TimelineEventType.HELP_OFFERED,
                    actor_identity=volunteer_identity,
                    metadata={"message": message},
                )
                self.registry.advance_to_in_progress(problem, volunteer_identity)
        except IntegrityError:
            problem = self.registry.get(problem_id)
            self.db.refresh(problem)
            logger.info(f"Concurrent duplicate help offer on problem {problem_id} by {volunteer_identity}")
            return OfferResult(problem_id, accepted=False, status=problem.status, already_offered=True)

        logger.info(f"Help offer registered on problem {problem_id} by {volunteer_identity}")
        return OfferResult(problem_id, accepted=True, status=problem.status)

    # =========================================================================
    # PROOF
    # =========================================================================

    def _check_can_submit(self, problem_id: int, volunteer_identity: str):
        problem = self.registry.get(problem_id)
        offer = self.get_offer(problem_id, volunteer_identity)
        if offer is None:
            raise NoHelpOfferError(problem_id, volunteer_identity)
        if problem.status == ProblemStatus.RESOLVED:
            raise AlreadyResolvedError(problem_id, problem.resolved_by)
        return problem, offer

    def submit_proof(
        self,
        problem_id: int,
        volunteer_identity: str,
        proof_ref: str,
        notes: Optional[str] = None,
    ) -> ProofResult:
        volunteer_identity = require_identity(volunteer_identity, "volunteer identity")
        proof_ref = require_text(proof_ref, "proof image reference", max_length=1000)
        problem, offer = self._check_can_submit(problem_id, volunteer_identity)
        return self._resolve(problem, offer, volunteer_identity, proof_ref, notes)

    def submit_proof_image(
        self,
        problem_id: int,
        volunteer_identity: str,
        image: str,
        notes: Optional[str] = None,
        mime_type: str = "image/jpeg",
    ) -> ProofResult:
        """
        Upload a proof photo (base64 or URL) then resolve. A failed upload
        raises ExternalServiceError and leaves the problem untouched.
        """
        volunteer_identity = require_identity(volunteer_identity, "volunteer identity")
        if self.image_store is None:
            raise ValidationError("Image uploads are not configured")
        problem, offer = self._check_can_submit(problem_id, volunteer_identity)

        if is_remote_url(image):
            payload = image
        else:
            payload = decode_image_payload(image, mime_type)
        stored = self.image_store.store(
            payload,
            build_filename(volunteer_identity, prefix=f"resolution_{problem_id}", mime_type=mime_type),
            mime_type,
        )
        logger.info(f"Proof image for problem {problem_id} stored at {stored.url}")
        return self._resolve(problem, offer, volunteer_identity, stored.url, notes)

    def _resolve(
        self,
        problem: ProblemDB,
        offer: ResolutionOfferDB,
        volunteer_identity: str,
        proof_ref: str,
        notes: Optional[str],
    ) -> ProofResult:
        notes = notes.strip() if notes and notes.strip() else None

        with self.registry.transaction():
            self.registry.resolve(problem, volunteer_identity, proof_ref, notes)
            offer.resolved_problem = True
            offer.status = OfferStatus.COMPLETED
            offer.proof_images = list(offer.proof_images or []) + [proof_ref]

        logger.info(f"Problem {problem.id} marked as resolved by {volunteer_identity}")

        supporters = self.db.query(UpvoteDB).filter(UpvoteDB.problem_id == problem.id).count()
        queued = False
        if self.notifier is not None:
            try:
                queued = bool(self.notifier.enqueue(problem.id, proof_ref))
            except Exception as e:
                logger.exception(f"Failed to queue resolution notifications for problem {problem.id}: {e}")

        return ProofResult(
            problem_id=problem.id,
            status=problem.status,
            resolved_by=problem.resolved_by,
            resolved_at=problem.resolved_at,
            proof_urls=list(problem.resolution_proof or []),
            notification_queued=queued,
            supporters=supporters,
        )

    # =========================================================================
    # VOLUNTEER BRIEFING
    # =========================================================================

    def get_problem_for_volunteer(self, problem_id: int, volunteer_identity: str) -> Dict[str, Any]:
        """Problem details for a volunteer who has offered help."""
        volunteer_identity = require_identity(volunteer_identity, "volunteer identity")
        problem = self.registry.get(problem_id)
        if self.get_offer(problem_id, volunteer_identity) is None:
            raise NoHelpOfferError(problem_id, volunteer_identity)

        verifications = (
            self.db.query(VerificationDB)
            .filter(VerificationDB.problem_id == problem_id)
            .order_by(VerificationDB.id)
            .all()
        )
        images = [url for v in verifications for url in (v.image_urls or []) if url]

        return {
            "id": problem.id,
            "title": problem.title,
            "description": problem.raw_message,
            "location_text": problem.location_text,
            "latitude": problem.latitude,
            "longitude": problem.longitude,
            "status": problem.status.value,
            "upvote_count": problem.upvote_count,
            "verification_count": len(verifications),
            "verification_images": images[:3],
            "resolved_at": problem.resolved_at.isoformat() if problem.resolved_at else None,
        }
