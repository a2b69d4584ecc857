"""
Read-side problem queries: details, top lists, severity ranking, per-user
history, nearest problem and ward rollups. Nothing here writes.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.db_models import ProblemDB, ProblemStatus, UpvoteDB
from ..geo.distance import format_distance, nearest
from ..geo.spatial_index import SpatialIndex
from ..validation import mask_identity, require_coordinates, require_identity
from .registry import ProblemRegistry
from .severity import problem_severity


logger = logging.getLogger(__name__)

OPEN_STATUSES = (ProblemStatus.REPORTED, ProblemStatus.IN_REVIEW, ProblemStatus.IN_PROGRESS)


def _shown(identity: Optional[str], mask: bool) -> Optional[str]:
    return mask_identity(identity) if mask else identity


def problem_to_dict(problem: ProblemDB, mask: bool = False) -> Dict[str, Any]:
    """Plain dict view. mask=True hides all but the last 4 characters of identities."""
    return {
        "id": problem.id,
        "title": problem.title,
        "description": problem.raw_message,
        "category": problem.category.value if problem.category else None,
        "reporter": _shown(problem.reporter_identity, mask),
        "status": problem.status.value,
        "location_text": problem.location_text,
        "latitude": problem.latitude,
        "longitude": problem.longitude,
        "location_verified": problem.location_verified,
        "location_source": problem.location_source.value if problem.location_source else None,
        "location_confidence": problem.location_confidence,
        "ward_id": problem.ward_id,
        "ward_name": problem.ward_name,
        "district_name": problem.district_name,
        "upvote_count": problem.upvote_count,
        "verification_count": problem.verification_count,
        "resolved_by": _shown(problem.resolved_by, mask),
        "resolved_at": problem.resolved_at.isoformat() if problem.resolved_at else None,
        "resolution_proof": list(problem.resolution_proof or []),
        "resolution_notes": problem.resolution_notes,
        "created_at": problem.created_at.isoformat() if problem.created_at else None,
        "updated_at": problem.updated_at.isoformat() if problem.updated_at else None,
    }


class ProblemQueryService:

    def __init__(self, db: Session, spatial_index: Optional[SpatialIndex] = None):
        self.db = db
        self.spatial_index = spatial_index
        self.registry = ProblemRegistry(db, spatial_index)

    def get_problem(self, problem_id: int, recent_upvotes: int = 5, mask: bool = True) -> Dict[str, Any]:
        """Problem details with its most recent upvotes. Identities are masked unless mask=False."""
        problem = self.registry.get(problem_id)
        upvotes = (
            self.db.query(UpvoteDB)
            .filter(UpvoteDB.problem_id == problem_id)
            .order_by(UpvoteDB.created_at.desc(), UpvoteDB.id.desc())
            .limit(recent_upvotes)
            .all()
        )
        data = problem_to_dict(problem, mask=mask)
        data["severity"] = problem_severity(problem).to_dict()
        data["recent_upvotes"] = [
            {
                "voter": _shown(u.voter_identity, mask),
                "created_at": u.created_at.isoformat() if u.created_at else None,
            }
            for u in upvotes
        ]
        return data

    def list_top_problems(self, limit: int = 10, location: Optional[str] = None) -> List[Dict[str, Any]]:
        limit = min(max(limit, 1), 20)
        query = self.db.query(ProblemDB)
        if location and location.strip():
            query = query.filter(ProblemDB.location_text.ilike(f"%{location.strip()}%"))
        problems = (
            query.order_by(ProblemDB.upvote_count.desc(), ProblemDB.id.asc())
            .limit(limit)
            .all()
        )
        logger.info(f"Fetched {len(problems)} top problems (limit={limit}, location={location})")
        return [
            {
                "id": p.id,
                "title": p.title,
                "location_text": p.location_text,
                "upvote_count": p.upvote_count,
                "status": p.status.value,
                "created_at": p.created_at.isoformat() if p.created_at else None,
            }
            for p in problems
        ]

    def list_by_severity(
        self,
        limit: int = 20,
        offset: int = 0,
        status: Optional[ProblemStatus] = None,
        min_severity: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Problems ordered by severity score, highest first.

        Without a status filter only open problems (REPORTED, IN_REVIEW,
        IN_PROGRESS) are ranked. Scores depend on age, so they are computed at
        read time rather than stored.
        """
        limit = min(max(limit, 1), 50)
        offset = max(offset, 0)
        now = now or datetime.utcnow()

        query = self.db.query(ProblemDB)
        if status is not None:
            query = query.filter(ProblemDB.status == status)
        else:
            query = query.filter(ProblemDB.status.in_(OPEN_STATUSES))

        scored = [(p, problem_severity(p, now=now)) for p in query.all()]
        if min_severity is not None:
            scored = [(p, s) for p, s in scored if s.total_score >= min_severity]
        scored.sort(key=lambda item: (-item[1].total_score, item[0].id))

        page = scored[offset:offset + limit]
        logger.info(
            f"Ranked {len(scored)} problems by severity "
            f"(status={status.value if status else 'open'}, min={min_severity}), returning {len(page)}"
        )
        return [
            {
                "id": p.id,
                "title": p.title,
                "location_text": p.location_text,
                "category": p.category.value if p.category else None,
                "status": p.status.value,
                "upvote_count": p.upvote_count,
                "verification_count": p.verification_count,
                "created_at": p.created_at.isoformat() if p.created_at else None,
                "severity_score": s.total_score,
                "severity_level": s.level,
                "severity": s.to_dict(),
            }
            for p, s in page
        ]

    def get_user_recent_problems(self, identity: str, limit: int = 3, mask: bool = True) -> List[Dict[str, Any]]:
        identity = require_identity(identity)
        return [problem_to_dict(p, mask=mask) for p in self.registry.list_for_reporter(identity, limit)]

    def find_nearest_problem(
        self,
        latitude: float,
        longitude: float,
        status: Optional[ProblemStatus] = None,
    ) -> Optional[Dict[str, Any]]:
        """Closest located problem; REJECTED ones are ignored unless asked for."""
        latitude, longitude = require_coordinates(latitude, longitude)
        query = self.db.query(ProblemDB.id, ProblemDB.latitude, ProblemDB.longitude).filter(
            ProblemDB.latitude.isnot(None),
            ProblemDB.longitude.isnot(None),
        )
        if status is not None:
            query = query.filter(ProblemDB.status == status)
        else:
            query = query.filter(ProblemDB.status != ProblemStatus.REJECTED)

        best = nearest(latitude, longitude, query.all())
        if best is None:
            return None

        problem_id, distance = best
        problem = self.registry.get(problem_id)
        return {
            "id": problem.id,
            "title": problem.title,
            "latitude": problem.latitude,
            "longitude": problem.longitude,
            "distance_m": round(distance, 1),
            "distance_formatted": format_distance(distance),
        }

    # =========================================================================
    # WARDS
    # =========================================================================

    def ward_stats(self) -> List[Dict[str, Any]]:
        """Problem count and total upvotes per ward, excluding REJECTED."""
        rows = (
            self.db.query(
                ProblemDB.ward_id,
                func.count(ProblemDB.id),
                func.coalesce(func.sum(ProblemDB.upvote_count), 0),
            )
            .filter(ProblemDB.ward_id.isnot(None), ProblemDB.status != ProblemStatus.REJECTED)
            .group_by(ProblemDB.ward_id)
            .all()
        )
        counts = {ward_id: (count, int(upvotes)) for ward_id, count, upvotes in rows}

        wards = self.spatial_index.wards.features if self.spatial_index else []
        result = []
        for ward in wards:
            problem_count, total_upvotes = counts.get(ward.id, (0, 0))
            result.append({
                "id": ward.id,
                "name": ward.name,
                "district_name": ward.parent_name,
                "province_name": ward.province_name,
                "problem_count": problem_count,
                "total_upvotes": total_upvotes,
            })
        result.sort(key=lambda w: w["problem_count"], reverse=True)
        return result

    def problems_by_ward(self, ward_id: str, mask: bool = True) -> List[Dict[str, Any]]:
        problems = (
            self.db.query(ProblemDB)
            .filter(ProblemDB.ward_id == ward_id, ProblemDB.status != ProblemStatus.REJECTED)
            .order_by(ProblemDB.upvote_count.desc(), ProblemDB.id.asc())
            .all()
        )
        return [problem_to_dict(p, mask=mask) for p in problems]
