"""
Problem Registry

Owns the Problem entity and its lifecycle. The only component that writes
problem rows; the Consensus Engine and the Volunteer Resolution Workflow
go through it.

Status is monotonic:
    REPORTED -> IN_REVIEW / IN_PROGRESS -> RESOLVED
    any non-terminal state -> REJECTED
Every creation and every transition appends a timeline event.

Status changes are compare-and-set UPDATEs on the problem row, so two racing
writers cannot both move the same problem out of the same state.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ...models.db_models import (
    ProblemDB, ProblemStatus, ProblemCategory, TimelineEventType,
)
from ...models.domain import LiveCoordinates, LocationResult
from ..errors import (
    AlreadyResolvedError, InvalidTransitionError, NotOwnerError,
    PreconditionError, ProblemNotFoundError, ValidationError,
)
from ..geo.location_resolver import LocationResolver
from ..geo.spatial_index import SpatialIndex
from ..validation import require_identity, require_text
from .timeline import TimelineService


logger = logging.getLogger(__name__)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================

STATE_CONFIG = {
    ProblemStatus.REPORTED: {
        "description": "Reported by a citizen, awaiting community action",
        "allowed_transitions": [
            ProblemStatus.IN_REVIEW,
            ProblemStatus.IN_PROGRESS,
            ProblemStatus.REJECTED,
        ],
    },
    ProblemStatus.IN_REVIEW: {
        "description": "Under administrative review",
        "allowed_transitions": [
            ProblemStatus.IN_PROGRESS,
            ProblemStatus.REJECTED,
        ],
    },
    ProblemStatus.IN_PROGRESS: {
        "description": "A volunteer has offered to fix it",
        "allowed_transitions": [
            ProblemStatus.RESOLVED,
            ProblemStatus.REJECTED,
        ],
    },
    ProblemStatus.RESOLVED: {
        "description": "Fixed, with photographic proof",
        "allowed_transitions": [],  # Terminal state
    },
    ProblemStatus.REJECTED: {
        "description": "Rejected by an administrator",
        "allowed_transitions": [],  # Terminal state
    },
}

# Targets reachable through the generic transition() entrypoint. RESOLVED
# needs proof and goes through resolve(); IN_PROGRESS needs an offer.
ADMIN_TARGETS = (ProblemStatus.IN_REVIEW, ProblemStatus.REJECTED)

# Order used for "not already past that point" checks
STATUS_RANK = {
    ProblemStatus.REPORTED: 0,
    ProblemStatus.IN_REVIEW: 1,
    ProblemStatus.IN_PROGRESS: 2,
    ProblemStatus.RESOLVED: 3,
    ProblemStatus.REJECTED: 3,
}


def can_transition(from_state: ProblemStatus, to_state: ProblemStatus) -> bool:
    return to_state in STATE_CONFIG.get(from_state, {}).get("allowed_transitions", [])


def is_terminal(state: ProblemStatus) -> bool:
    return not STATE_CONFIG.get(state, {}).get("allowed_transitions")


class ProblemRegistry:
    """
    Usage:
        registry = ProblemRegistry(db, spatial_index)
        problem = registry.create("+23276000000", "Broken pipe", "Water everywhere", location)
    """

    def __init__(self, db: Session, spatial_index: Optional[SpatialIndex] = None):
        self.db = db
        self.spatial_index = spatial_index
        self.timeline = TimelineService(db)

    # =========================================================================
    # TRANSACTIONS / LOOKUP
    # =========================================================================

    @contextmanager
    def transaction(self):
        """Commit on success, roll back on any error and re-raise."""
        try:
            yield self.db
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def get(self, problem_id: int) -> ProblemDB:
        problem = self.db.get(ProblemDB, problem_id)
        if problem is None:
            raise ProblemNotFoundError(problem_id)
        return problem

    # =========================================================================
    # CREATION
    # =========================================================================

    def create(
        self,
        reporter_identity: str,
        title: str,
        description: str,
        location: Optional[LocationResult] = None,
        category: ProblemCategory = ProblemCategory.OTHER,
    ) -> ProblemDB:
        reporter_identity = require_identity(reporter_identity, "reporter identity")
        title = require_text(title, "title", max_length=255)
        description = require_text(description, "description")
        location = location or LocationResult.empty()

        problem = ProblemDB(
            reporter_identity=reporter_identity,
            title=title,
            raw_message=description,
            category=category,
            status=ProblemStatus.REPORTED,
            upvote_count=0,
            verification_count=0,
            resolution_proof=[],
        )
        self._apply_location(problem, location)

        with self.transaction():
            self.db.add(problem)
            self.db.flush()
            self.timeline.record(
                problem.id,
                TimelineEventType.REPORTED,
                actor_identity=reporter_identity,
                metadata={
                    "title": title,
                    "location_text": problem.location_text,
                    "location_source": problem.location_source.value if problem.location_source else None,
                    "location_verified": problem.location_verified,
                    "ward_id": problem.ward_id,
                },
            )

        logger.info(
            f"Problem {problem.id} reported by {reporter_identity} "
            f"(location_verified={problem.location_verified}, ward={problem.ward_name})"
        )
        return problem

    def _apply_location(self, problem: ProblemDB, location: LocationResult) -> None:
        problem.location_text = location.normalized_text
        problem.latitude = location.latitude
        problem.longitude = location.longitude
        problem.location_verified = location.verified
        problem.location_source = location.source
        problem.location_confidence = location.confidence.value if location.source else None

        problem.ward_id = None
        problem.ward_name = None
        problem.district_name = None
        if location.has_coordinates and self.spatial_index is not None:
            ward = self.spatial_index.find_ward(location.latitude, location.longitude)
            if ward is not None:
                problem.ward_id = ward.id
                problem.ward_name = ward.name
                problem.district_name = ward.parent_name
            else:
                district = self.spatial_index.find_district(location.latitude, location.longitude)
                if district is not None:
                    problem.district_name = district.name

    # =========================================================================
    # STATE TRANSITIONS
    # =========================================================================

    def _compare_and_set_status(
        self,
        problem: ProblemDB,
        from_state: ProblemStatus,
        to_state: ProblemStatus,
        **values: Any,
    ) -> bool:
        """Atomic status change; False if someone else moved the row first."""
        stmt = (
            update(ProblemDB)
            .where(ProblemDB.id == problem.id, ProblemDB.status == from_state)
            .values(status=to_state, updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        changed = self.db.execute(stmt).rowcount == 1
        self.db.refresh(problem)
        return changed

    def apply_transition(
        self,
        problem: ProblemDB,
        to_state: ProblemStatus,
        actor_identity: Optional[str] = None,
        trigger: str = "manual",
        **values: Any,
    ) -> ProblemDB:
        """
        Move problem to to_state inside the caller's transaction.

        Raises InvalidTransitionError if the state machine forbids it or the
        row changed underneath us.
        """
        from_state = problem.status
        if not can_transition(from_state, to_state):
            raise InvalidTransitionError(from_state, to_state)

        if not self._compare_and_set_status(problem, from_state, to_state, **values):
            raise InvalidTransitionError(problem.status, to_state)

        event_type = {
            ProblemStatus.RESOLVED: TimelineEventType.RESOLVED,
            ProblemStatus.REJECTED: TimelineEventType.REJECTED,
        }.get(to_state, TimelineEventType.STATUS_CHANGED)

        metadata = {"from_state": from_state.value, "to_state": to_state.value, "trigger": trigger}
        if "resolution_notes" in values and values["resolution_notes"]:
            metadata["notes"] = values["resolution_notes"]
        self.timeline.record(problem.id, event_type, actor_identity=actor_identity, metadata=metadata)

        logger.info(f"Problem {problem.id}: {from_state.value} -> {to_state.value} ({trigger})")
        return problem

    def transition(
        self,
        problem_id: int,
        target_state: ProblemStatus,
        actor_identity: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> ProblemDB:
        """Administrative transition (IN_REVIEW or REJECTED), committed immediately."""
        if target_state not in ADMIN_TARGETS:
            raise ValidationError(
                f"{target_state.value} cannot be set directly; it is driven by the volunteer workflow"
            )
        problem = self.get(problem_id)
        with self.transaction():
            self.apply_transition(
                problem, target_state,
                actor_identity=actor_identity,
                trigger=reason or "administrative",
            )
        return problem

    def advance_to_in_progress(self, problem: ProblemDB, actor_identity: str) -> ProblemDB:
        """IN_PROGRESS unless the problem is already there or further along."""
        if STATUS_RANK[problem.status] >= STATUS_RANK[ProblemStatus.IN_PROGRESS]:
            return problem
        return self.apply_transition(problem, ProblemStatus.IN_PROGRESS, actor_identity, trigger="help_offered")

    def resolve(
        self,
        problem: ProblemDB,
        resolver_identity: str,
        proof_url: str,
        notes: Optional[str] = None,
    ) -> ProblemDB:
        """
        Set the resolution fields and move to RESOLVED inside the caller's
        transaction. Resolution fields are written exactly once.
        """
        if problem.status == ProblemStatus.RESOLVED:
            raise AlreadyResolvedError(problem.id, problem.resolved_by)

        proofs = list(problem.resolution_proof or []) + [proof_url]
        try:
            return self.apply_transition(
                problem,
                ProblemStatus.RESOLVED,
                actor_identity=resolver_identity,
                trigger="proof_submitted",
                resolved_by=resolver_identity,
                resolved_at=datetime.utcnow(),
                resolution_proof=proofs,
                resolution_notes=notes,
            )
        except InvalidTransitionError:
            if problem.status == ProblemStatus.RESOLVED:
                raise AlreadyResolvedError(problem.id, problem.resolved_by)
            raise

    # =========================================================================
    # COUNTERS (called by the Consensus Engine inside its transaction)
    # =========================================================================

    def _increment(self, problem_id: int, column) -> int:
        stmt = (
            update(ProblemDB)
            .where(ProblemDB.id == problem_id)
            .values({column: column + 1, ProblemDB.updated_at: datetime.utcnow()})
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        return self.db.execute(select(column).where(ProblemDB.id == problem_id)).scalar_one()

    def increment_upvotes(self, problem_id: int) -> int:
        return self._increment(problem_id, ProblemDB.upvote_count)

    def increment_verifications(self, problem_id: int) -> int:
        return self._increment(problem_id, ProblemDB.verification_count)

    def mark_location_verified(self, problem: ProblemDB) -> None:
        if not problem.location_verified:
            problem.location_verified = True

    # =========================================================================
    # REPORTER EDITS
    # =========================================================================

    def _require_editable(self, problem: ProblemDB, identity: str) -> None:
        if problem.reporter_identity != identity:
            raise NotOwnerError(problem.id)
        if is_terminal(problem.status):
            raise PreconditionError(
                f"Problem #{problem.id} is {problem.status.value} and can no longer be edited"
            )

    def update_location(
        self,
        problem_id: int,
        reporter_identity: str,
        live: LiveCoordinates,
        resolver: LocationResolver,
    ) -> ProblemDB:
        """Replace a problem's location with a live share from its reporter."""
        reporter_identity = require_identity(reporter_identity, "reporter identity")
        problem = self.get(problem_id)
        self._require_editable(problem, reporter_identity)

        location = resolver.resolve_coordinates(live)
        with self.transaction():
            self._apply_location(problem, location)
            self.timeline.record(
                problem.id,
                TimelineEventType.LOCATION_UPDATED,
                actor_identity=reporter_identity,
                metadata={
                    "latitude": location.latitude,
                    "longitude": location.longitude,
                    "location_verified": location.verified,
                },
            )
        logger.info(f"Problem {problem.id} location updated (verified={problem.location_verified})")
        return problem

    def update_description(
        self,
        problem_id: int,
        reporter_identity: str,
        title: Optional[str] = None,
        location_text: Optional[str] = None,
    ) -> ProblemDB:
        reporter_identity = require_identity(reporter_identity, "reporter identity")
        problem = self.get(problem_id)
        self._require_editable(problem, reporter_identity)

        updates: Dict[str, str] = {}
        if title and title.strip():
            updates["title"] = require_text(title, "title", max_length=255)
        if location_text and location_text.strip():
            updates["location_text"] = require_text(location_text, "location text", max_length=500)
        if not updates:
            raise ValidationError("No updates provided")

        with self.transaction():
            for key, value in updates.items():
                setattr(problem, key, value)
        logger.info(f"Problem {problem.id} description updated: {sorted(updates)}")
        return problem

    # =========================================================================
    # READ HELPERS
    # =========================================================================

    def list_for_reporter(self, reporter_identity: str, limit: int = 3) -> List[ProblemDB]:
        limit = min(max(limit, 1), 10)
        return (
            self.db.query(ProblemDB)
            .filter(ProblemDB.reporter_identity == reporter_identity)
            .order_by(ProblemDB.created_at.desc(), ProblemDB.id.desc())
            .limit(limit)
            .all()
        )
