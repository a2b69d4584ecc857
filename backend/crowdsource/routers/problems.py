"""
Problem API Routes

Report, corroborate and resolve problems. Write operations return the
engine's result objects; duplicates come back as 200 with accepted=false.

Routes are plain def: FastAPI runs them in its threadpool, so a slow
geocoder or image upload holds one worker thread, not the event loop.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..dependencies import get_engine, get_location_resolver
from ..models.db_models import ProblemCategory, ProblemStatus
from ..models.domain import FreeTextLocation, LiveCoordinates
from ..services.engine import CrowdsourceEngine
from ..services.errors import CrowdsourceError
from ..services.geo.location_resolver import LocationResolver
from ..services.problems.queries import problem_to_dict
from .errors import http_error


router = APIRouter(prefix="/problems", tags=["problems"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ReportProblemRequest(BaseModel):
    """A new problem report."""
    reporter_identity: str = Field(..., description="Reporter's phone number or device fingerprint")
    title: str = Field(..., description="Short title")
    description: str = Field(..., description="Full description in the reporter's words")
    latitude: Optional[float] = Field(None, description="Live-shared latitude")
    longitude: Optional[float] = Field(None, description="Live-shared longitude")
    location_text: Optional[str] = Field(None, description="Typed place name")
    category: ProblemCategory = Field(default=ProblemCategory.OTHER)


class UpvoteRequest(BaseModel):
    voter_identity: str


class VerifyRequest(BaseModel):
    """On-site verification with the verifier's GPS fix."""
    verifier_identity: str
    latitude: float
    longitude: float
    image_urls: List[str] = Field(default_factory=list)


class OfferHelpRequest(BaseModel):
    volunteer_identity: str
    message: Optional[str] = None


class SubmitProofRequest(BaseModel):
    """Either a hosted proof_ref or a base64 image to upload first."""
    volunteer_identity: str
    proof_ref: Optional[str] = Field(None, description="URL of an already uploaded proof image")
    image: Optional[str] = Field(None, description="Base64 image (data URI allowed)")
    mime_type: str = Field(default="image/jpeg")
    notes: Optional[str] = None


class UpdateLocationRequest(BaseModel):
    reporter_identity: str
    latitude: float
    longitude: float
    description: Optional[str] = None


class UpdateDescriptionRequest(BaseModel):
    reporter_identity: str
    title: Optional[str] = None
    location_text: Optional[str] = None


# =============================================================================
# REPORT / READ
# =============================================================================

@router.post("", response_model=dict, status_code=201)
def report_problem(
    request: ReportProblemRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
):
    live = None
    if request.latitude is not None or request.longitude is not None:
        if request.latitude is None or request.longitude is None:
            raise HTTPException(status_code=400, detail="Latitude and longitude must be sent together")
        live = LiveCoordinates(request.latitude, request.longitude)
    text = FreeTextLocation(request.location_text) if request.location_text else None

    try:
        problem = engine.report_problem(
            request.reporter_identity,
            request.title,
            request.description,
            live=live,
            text=text,
            category=request.category,
        )
    except CrowdsourceError as e:
        raise http_error(e)
    return problem_to_dict(problem)


@router.get("", response_model=dict)
def list_top_problems(
    limit: int = Query(10, description="Number of problems (1-20)"),
    location: Optional[str] = Query(None, description="Filter by location text"),
    engine: CrowdsourceEngine = Depends(get_engine),
):
    problems = engine.queries.list_top_problems(limit=limit, location=location)
    return {"count": len(problems), "problems": problems}


@router.get("/severity", response_model=dict)
def list_problems_by_severity(
    limit: int = Query(20, description="Number of problems (1-50)"),
    offset: int = Query(0, ge=0),
    status: Optional[ProblemStatus] = Query(None, description="Defaults to open problems"),
    min_severity: Optional[float] = Query(None, ge=0, le=100),
    engine: CrowdsourceEngine = Depends(get_engine),
):
    problems = engine.queries.list_by_severity(
        limit=limit, offset=offset, status=status, min_severity=min_severity
    )
    return {"count": len(problems), "problems": problems}


@router.get("/nearest", response_model=dict)
def find_nearest_problem(
    lat: float,
    lon: float,
    status: Optional[ProblemStatus] = None,
    engine: CrowdsourceEngine = Depends(get_engine),
):
    try:
        nearest = engine.queries.find_nearest_problem(lat, lon, status)
    except CrowdsourceError as e:
        raise http_error(e)
    return {"problem": nearest}


@router.get("/users/{identity}", response_model=dict)
def get_user_recent_problems(
    identity: str,
    limit: int = Query(3, description="Number of problems (1-10)"),
    engine: CrowdsourceEngine = Depends(get_engine),
):
    try:
        problems = engine.queries.get_user_recent_problems(identity, limit)
    except CrowdsourceError as e:
        raise http_error(e)
    return {"count": len(problems), "problems": problems}


@router.get("/{problem_id}", response_model=dict)
def get_problem(problem_id: int, engine: CrowdsourceEngine = Depends(get_engine)):
    try:
        return engine.queries.get_problem(problem_id)
    except CrowdsourceError as e:
        raise http_error(e)


# =============================================================================
# CONSENSUS
# =============================================================================

@router.post("/{problem_id}/upvote", response_model=dict)
def upvote_problem(
    problem_id: int,
    request: UpvoteRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
):
    try:
        return engine.upvote(problem_id, request.voter_identity).to_dict()
    except CrowdsourceError as e:
        raise http_error(e)


@router.post("/{problem_id}/verify", response_model=dict)
def verify_problem(
    problem_id: int,
    request: VerifyRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
):
    try:
        result = engine.verify(
            problem_id, request.verifier_identity,
            request.latitude, request.longitude, request.image_urls,
        )
    except CrowdsourceError as e:
        raise http_error(e)
    return result.to_dict()


@router.get("/{problem_id}/accuracy", response_model=dict)
def get_spatial_accuracy(problem_id: int, engine: CrowdsourceEngine = Depends(get_engine)):
    try:
        return engine.consensus.spatial_accuracy(problem_id).to_dict()
    except CrowdsourceError as e:
        raise http_error(e)


# =============================================================================
# VOLUNTEER RESOLUTION
# =============================================================================

@router.post("/{problem_id}/offers", response_model=dict)
def offer_help(
    problem_id: int,
    request: OfferHelpRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
):
    try:
        return engine.offer_help(problem_id, request.volunteer_identity, request.message).to_dict()
    except CrowdsourceError as e:
        raise http_error(e)


@router.get("/{problem_id}/volunteer-brief", response_model=dict)
def get_problem_for_volunteer(
    problem_id: int,
    volunteer_identity: str,
    engine: CrowdsourceEngine = Depends(get_engine),
):
    try:
        return engine.workflow.get_problem_for_volunteer(problem_id, volunteer_identity)
    except CrowdsourceError as e:
        raise http_error(e)


@router.post("/{problem_id}/proof", response_model=dict)
def submit_proof(
    problem_id: int,
    request: SubmitProofRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
):
    """
    Resolve a problem with photographic proof.

    Requires a prior help offer from the same volunteer. A failed image
    upload returns 502 and leaves the problem unresolved.
    """
    if not request.proof_ref and not request.image:
        raise HTTPException(status_code=400, detail="Provide proof_ref or image")

    try:
        if request.image:
            result = engine.workflow.submit_proof_image(
                problem_id, request.volunteer_identity, request.image,
                notes=request.notes, mime_type=request.mime_type,
            )
        else:
            result = engine.submit_proof(problem_id, request.volunteer_identity, request.proof_ref, request.notes)
    except CrowdsourceError as e:
        raise http_error(e)
    return result.to_dict()


# =============================================================================
# REPORTER EDITS
# =============================================================================

@router.patch("/{problem_id}/location", response_model=dict)
def update_problem_location(
    problem_id: int,
    request: UpdateLocationRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
    resolver: LocationResolver = Depends(get_location_resolver),
):
    live = LiveCoordinates(request.latitude, request.longitude, request.description)
    try:
        problem = engine.registry.update_location(problem_id, request.reporter_identity, live, resolver)
    except CrowdsourceError as e:
        raise http_error(e)
    return problem_to_dict(problem)


@router.patch("/{problem_id}", response_model=dict)
def update_problem_description(
    problem_id: int,
    request: UpdateDescriptionRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
):
    try:
        problem = engine.registry.update_description(
            problem_id, request.reporter_identity,
            title=request.title, location_text=request.location_text,
        )
    except CrowdsourceError as e:
        raise http_error(e)
    return problem_to_dict(problem)


# =============================================================================
# TIMELINE
# =============================================================================

@router.get("/{problem_id}/timeline", response_model=dict)
def get_timeline(problem_id: int, engine: CrowdsourceEngine = Depends(get_engine)):
    try:
        engine.registry.get(problem_id)
    except CrowdsourceError as e:
        raise http_error(e)
    events = engine.registry.timeline.get_timeline(problem_id, mask=True)
    return {"problem_id": problem_id, "count": len(events), "events": events}


@router.get("/{problem_id}/timeline/stats", response_model=dict)
def get_timeline_stats(problem_id: int, engine: CrowdsourceEngine = Depends(get_engine)):
    try:
        engine.registry.get(problem_id)
    except CrowdsourceError as e:
        raise http_error(e)
    return {"problem_id": problem_id, "stats": engine.registry.timeline.get_timeline_stats(problem_id)}
