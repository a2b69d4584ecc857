"""
Geo API Routes

Boundary layers for map collaborators, point lookup and ward rollups.
"""
from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import get_engine, get_spatial_index
from ..services.engine import CrowdsourceEngine
from ..services.errors import CrowdsourceError
from ..services.geo.spatial_index import SpatialIndex, to_feature_collection
from .errors import http_error


router = APIRouter(prefix="/geo", tags=["geo"])


@router.get("/districts", response_model=dict)
def get_districts(spatial_index: SpatialIndex = Depends(get_spatial_index)):
    """District boundaries as a GeoJSON FeatureCollection."""
    return to_feature_collection(spatial_index.districts.features)


@router.get("/wards", response_model=dict)
def get_wards(spatial_index: SpatialIndex = Depends(get_spatial_index)):
    """Ward/chiefdom boundaries as a GeoJSON FeatureCollection."""
    return to_feature_collection(spatial_index.wards.features)


@router.get("/wards/stats", response_model=dict)
def get_ward_stats(engine: CrowdsourceEngine = Depends(get_engine)):
    wards = engine.queries.ward_stats()
    return {"count": len(wards), "wards": wards}


@router.get("/locate", response_model=dict)
def locate(lat: float, lon: float, engine: CrowdsourceEngine = Depends(get_engine)):
    """Ward and district containing a point; either may be null."""
    try:
        ward = engine.find_ward(lat, lon)
        district = engine.find_district(lat, lon)
    except CrowdsourceError as e:
        raise http_error(e)
    return {
        "latitude": lat,
        "longitude": lon,
        "ward": ward.to_properties() if ward else None,
        "district": district.to_properties() if district else None,
    }


@router.get("/wards/{ward_id}/problems", response_model=dict)
def get_problems_by_ward(
    ward_id: str,
    engine: CrowdsourceEngine = Depends(get_engine),
    spatial_index: SpatialIndex = Depends(get_spatial_index),
):
    ward = spatial_index.wards.get(ward_id)
    if ward is None:
        raise HTTPException(status_code=404, detail="Ward not found")
    problems = engine.queries.problems_by_ward(ward_id)
    return {"ward": ward.to_properties(), "count": len(problems), "problems": problems}
