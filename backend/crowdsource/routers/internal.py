"""
Internal API Routes

Administrative and service-to-service endpoints, all behind the API key:
status transitions, rejection, boundary cache reload, image upload and
synchronous notification replay.
"""
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..auth import require_api_key
from ..dependencies import get_engine, get_fanout_worker, get_image_store, get_spatial_index
from ..models.db_models import ProblemStatus
from ..services.engine import CrowdsourceEngine
from ..services.errors import CrowdsourceError, PreconditionError
from ..services.geo.spatial_index import SpatialIndex
from ..services.notifications.worker import FanoutWorker
from ..services.problems.queries import problem_to_dict
from ..services.storage.image_store import ImageStore
from ..services.storage.media import MediaService
from .errors import http_error


router = APIRouter(prefix="/internal", tags=["internal"])


class TransitionRequest(BaseModel):
    target_state: ProblemStatus
    actor_identity: Optional[str] = None
    reason: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str = Field(..., description="Why the problem was rejected")
    actor_identity: Optional[str] = None


class UploadImageRequest(BaseModel):
    image: str = Field(..., description="Base64 image (data URI allowed) or hosted URL")
    filename: Optional[str] = None
    mime_type: str = Field(default="image/jpeg")
    problem_id: Optional[int] = None
    uploaded_by: Optional[str] = None


@router.post("/problems/{problem_id}/transition", response_model=dict)
def transition_problem(
    problem_id: int,
    request: TransitionRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
    _: bool = Depends(require_api_key),
):
    """Administrative transition to IN_REVIEW or REJECTED."""
    try:
        problem = engine.registry.transition(
            problem_id, request.target_state,
            actor_identity=request.actor_identity, reason=request.reason,
        )
    except CrowdsourceError as e:
        raise http_error(e)
    return problem_to_dict(problem)


@router.post("/problems/{problem_id}/reject", response_model=dict)
def reject_problem(
    problem_id: int,
    request: RejectRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
    _: bool = Depends(require_api_key),
):
    try:
        problem = engine.registry.transition(
            problem_id, ProblemStatus.REJECTED,
            actor_identity=request.actor_identity, reason=request.reason,
        )
    except CrowdsourceError as e:
        raise http_error(e)
    return problem_to_dict(problem)


@router.post("/boundaries/reload", response_model=dict)
def reload_boundaries(
    spatial_index: SpatialIndex = Depends(get_spatial_index),
    _: bool = Depends(require_api_key),
):
    """Drop cached boundary geometry and load it again from disk."""
    spatial_index.clear_cache()
    return {
        "districts": len(spatial_index.districts.features),
        "wards": len(spatial_index.wards.features),
    }


@router.post("/media", response_model=dict, status_code=201)
def upload_image(
    request: UploadImageRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
    image_store: ImageStore = Depends(get_image_store),
    _: bool = Depends(require_api_key),
):
    service = MediaService(engine.db, image_store)
    try:
        return service.upload_image(
            request.image,
            filename=request.filename,
            mime_type=request.mime_type,
            problem_id=request.problem_id,
            uploaded_by=request.uploaded_by,
        )
    except CrowdsourceError as e:
        raise http_error(e)


@router.post("/problems/{problem_id}/notify", response_model=dict)
def replay_notifications(
    problem_id: int,
    engine: CrowdsourceEngine = Depends(get_engine),
    worker: FanoutWorker = Depends(get_fanout_worker),
    _: bool = Depends(require_api_key),
):
    """Queue the resolution fanout again for a RESOLVED problem."""
    try:
        problem = engine.registry.get(problem_id)
    except CrowdsourceError as e:
        raise http_error(e)
    if problem.status != ProblemStatus.RESOLVED:
        raise http_error(PreconditionError(f"Problem #{problem_id} is not resolved"))
    proof = problem.resolution_proof[0] if problem.resolution_proof else None
    return {"problem_id": problem_id, "queued": worker.enqueue(problem_id, proof)}
