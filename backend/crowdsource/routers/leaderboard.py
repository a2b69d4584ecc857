"""
Leaderboard API Routes
"""
from fastapi import APIRouter, Depends, Query

from ..dependencies import get_engine
from ..services.engine import CrowdsourceEngine
from ..services.errors import CrowdsourceError
from .errors import http_error


router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("", response_model=dict)
def get_leaderboard(
    metric: str = Query("all", description="all, problems, upvotes, verifications, responses, resolutions"),
    limit: int = Query(10, description="Number of entries (1-50)"),
    engine: CrowdsourceEngine = Depends(get_engine),
):
    """Ranked contributors with masked identities."""
    try:
        entries = engine.get_leaderboard(metric, limit)
    except CrowdsourceError as e:
        raise http_error(e)
    return {
        "metric": metric,
        "count": len(entries),
        "entries": [entry.to_dict() for entry in entries],
    }


@router.get("/users/{identity}", response_model=dict)
def get_user_stats(identity: str, engine: CrowdsourceEngine = Depends(get_engine)):
    try:
        return engine.leaderboard.get_user_stats(identity)
    except CrowdsourceError as e:
        raise http_error(e)
