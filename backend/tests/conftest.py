"""
Shared fixtures: in-memory SQLite session, fake collaborators and a small
synthetic boundary dataset.
"""
import json
import os
import tempfile

os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="crowdsource-uploads-"))

import pytest
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crowdsource.database import Base
from crowdsource.models import db_models  # noqa: F401  registers tables
from crowdsource.services.engine import CrowdsourceEngine
from crowdsource.services.errors import ExternalServiceError
from crowdsource.services.geo.geocoder import Geocoder, PlaceMatch
from crowdsource.services.geo.location_resolver import LocationResolver
from crowdsource.services.geo.spatial_index import SpatialIndex
from crowdsource.services.notifications.messaging import MessagingClient
from crowdsource.services.problems.registry import ProblemRegistry
from crowdsource.services.storage.image_store import ImageStore, StoredImage


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeGeocoder(Geocoder):
    """Canned geocoder. Set fail=True to simulate an outage."""

    def __init__(self, candidates=None, reverse=None, fail=False):
        self.candidates = candidates or {}
        self.reverse = reverse
        self.fail = fail
        self.calls = []

    def geocode(self, text):
        self.calls.append(("geocode", text))
        if self.fail:
            raise ExternalServiceError("geocoder down")
        return list(self.candidates.get(text, []))

    def reverse_geocode(self, latitude, longitude):
        self.calls.append(("reverse", latitude, longitude))
        if self.fail:
            raise ExternalServiceError("geocoder down")
        return self.reverse


class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeMessenger(MessagingClient):
    """Records every send; recipients in fail_for raise ExternalServiceError."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def send(self, recipient, text, media_url=None):
        self.sent.append((recipient, text, media_url))
        if recipient in self.fail_for:
            raise ExternalServiceError(f"delivery to {recipient} failed")


class FakeImageStore(ImageStore):
    def __init__(self, fail=False):
        self.fail = fail
        self.stored = []

    def store(self, data, filename, mime_type="image/jpeg"):
        if self.fail:
            raise ExternalServiceError("Image upload failed: storage unavailable")
        self.stored.append((filename, data, mime_type))
        if isinstance(data, str):
            return StoredImage(url=data)
        return StoredImage(url=f"https://images.test/{filename}", key=filename, size=len(data))


@pytest.fixture
def geocoder():
    # Coarse reverse match: live coordinates resolve with medium confidence
    return FakeGeocoder(reverse=PlaceMatch(name="Koya", exact=False))


@pytest.fixture
def resolver(geocoder):
    return LocationResolver(geocoder)


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def image_store():
    return FakeImageStore()


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.enqueue.return_value = True
    return mock


# =============================================================================
# BOUNDARIES
# =============================================================================

def square(lon_min, lat_min, lon_max, lat_max):
    return [[lon_min, lat_min], [lon_max, lat_min], [lon_max, lat_max], [lon_min, lat_max], [lon_min, lat_min]]


DISTRICTS = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "properties": {"ADM2_PCODE": "SL0304", "ADM2_EN": "Port Loko", "ADM1_EN": "North Western"},
            "geometry": {"type": "Polygon", "coordinates": [square(-12.6, 8.3, -12.0, 8.8)]},
        },
        {
            "type": "Feature",
            "properties": {"ADM2_PCODE": "SL0402", "ADM2_EN": "Western Area Urban", "ADM1_EN": "Western"},
            "geometry": {"type": "Polygon", "coordinates": [square(-13.3, 8.38, -13.1, 8.5)]},
        },
    ],
}

WARDS = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "properties": {"adm3_pcode": "SL030401", "adm3_name": "Koya", "adm2_name": "Port Loko", "adm1_name": "North Western"},
            "geometry": {"type": "Polygon", "coordinates": [square(-12.4, 8.4, -12.1, 8.6)]},
        },
        {
            "type": "Feature",
            "properties": {"adm3_pcode": "SL040202", "adm3_name": "Freetown East", "adm2_name": "Western Area Urban", "adm1_name": "Western"},
            "geometry": {"type": "MultiPolygon", "coordinates": [
                [square(-13.30, 8.38, -13.25, 8.40)],
                [square(-13.20, 8.44, -13.15, 8.50)],
            ]},
        },
    ],
}

# Inside Koya ward / Port Loko district
REPORT_POINT = (8.4606, -12.2684)
# Inside Port Loko district but outside every ward
DISTRICT_ONLY_POINT = (8.7, -12.5)
# Far from every boundary (Gulf of Guinea)
OCEAN_POINT = (2.0, -5.0)


@pytest.fixture
def boundary_dir(tmp_path):
    (tmp_path / "districts.geojson").write_text(json.dumps(DISTRICTS))
    (tmp_path / "wards.geojson").write_text(json.dumps(WARDS))
    return tmp_path


@pytest.fixture
def spatial_index(boundary_dir):
    return SpatialIndex.from_directory(str(boundary_dir), "districts.geojson", "wards.geojson")


# =============================================================================
# ENGINE
# =============================================================================

@pytest.fixture
def registry(db, spatial_index):
    return ProblemRegistry(db, spatial_index)


@pytest.fixture
def engine(db, resolver, spatial_index, notifier, image_store):
    return CrowdsourceEngine(
        db,
        resolver=resolver,
        spatial_index=spatial_index,
        notifier=notifier,
        image_store=image_store,
    )
