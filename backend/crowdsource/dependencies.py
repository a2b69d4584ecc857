"""
Crowdsource Engine - Shared Collaborators

Process-wide singletons (boundary cache, dedup cache, fanout worker,
outbound clients) and the FastAPI dependencies that hand them to routers.
Tests replace them through app.dependency_overrides.
"""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from .database import SessionLocal, get_db
from .services.engine import CrowdsourceEngine
from .services.geo.geocoder import NominatimGeocoder
from .services.geo.location_resolver import LocationResolver
from .services.geo.spatial_index import SpatialIndex
from .services.idempotency.guard import IdempotencyGuard
from .services.notifications.messaging import WhatsAppGatewayClient
from .services.notifications.worker import FanoutWorker
from .services.storage.image_store import ImageStore, build_image_store


@lru_cache(maxsize=1)
def get_spatial_index() -> SpatialIndex:
    return SpatialIndex.from_directory()


@lru_cache(maxsize=1)
def get_location_resolver() -> LocationResolver:
    return LocationResolver(NominatimGeocoder())


@lru_cache(maxsize=1)
def get_idempotency_guard() -> IdempotencyGuard:
    return IdempotencyGuard()


@lru_cache(maxsize=1)
def get_fanout_worker() -> FanoutWorker:
    return FanoutWorker(SessionLocal, WhatsAppGatewayClient())


@lru_cache(maxsize=1)
def get_image_store() -> ImageStore:
    return build_image_store()


def get_engine(
    db: Session = Depends(get_db),
    resolver: LocationResolver = Depends(get_location_resolver),
    spatial_index: SpatialIndex = Depends(get_spatial_index),
    worker: FanoutWorker = Depends(get_fanout_worker),
    image_store: ImageStore = Depends(get_image_store),
) -> CrowdsourceEngine:
    return CrowdsourceEngine(
        db,
        resolver=resolver,
        spatial_index=spatial_index,
        notifier=worker,
        image_store=image_store,
    )
