"""
Spatial Index

Answers "which administrative boundary contains (lat, lon)" with a ray-casting
point-in-polygon test over GeoJSON boundary layers.

- Polygon: outer ring only (holes are not modeled)
- MultiPolygon: each member's outer ring, first containment wins
- Features are scanned linearly in load order; first match wins

Two layers are loaded lazily from static GeoJSON files (districts = admin
level 2, wards/chiefdoms = admin level 3) and cached for the process
lifetime. clear_cache() drops both for hot-reloading the dataset.
"""
import json
import logging
import os
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ...config import BOUNDARY_DATA_DIR, DISTRICT_BOUNDARY_FILE, WARD_BOUNDARY_FILE
from ...models.domain import BoundaryFeature


logger = logging.getLogger(__name__)


# GeoJSON property keys vary in case between dataset releases
LAYER_PROPERTY_KEYS = {
    "district": {
        "id": ("adm2_pcode", "ADM2_PCODE"),
        "name": ("adm2_name", "ADM2_EN"),
        "parent": ("adm1_name", "ADM1_EN"),
        "province": ("adm1_name", "ADM1_EN"),
    },
    "ward": {
        "id": ("adm3_pcode", "ADM3_PCODE"),
        "name": ("adm3_name", "ADM3_EN"),
        "parent": ("adm2_name", "ADM2_EN"),
        "province": ("adm1_name", "ADM1_EN"),
    },
}


# =============================================================================
# GEOMETRY
# =============================================================================

def point_in_ring(latitude: float, longitude: float, ring: Sequence[Sequence[float]]) -> bool:
    """Ray casting over a ring of [lon, lat] vertices."""
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > latitude) != (yj > latitude):
            crossing = (xj - xi) * (latitude - yi) / (yj - yi) + xi
            if longitude < crossing:
                inside = not inside
        j = i
    return inside


def point_in_geometry(latitude: float, longitude: float, geometry_type: str, coordinates: Any) -> bool:
    if not coordinates:
        return False
    if geometry_type == "Polygon":
        return point_in_ring(latitude, longitude, coordinates[0])
    if geometry_type == "MultiPolygon":
        for polygon in coordinates:
            if polygon and point_in_ring(latitude, longitude, polygon[0]):
                return True
    return False


def find_containing(
    latitude: float,
    longitude: float,
    boundaries: Iterable[BoundaryFeature],
) -> Optional[BoundaryFeature]:
    """First boundary (in load order) containing the point, or None."""
    for feature in boundaries:
        if point_in_geometry(latitude, longitude, feature.geometry_type, feature.coordinates):
            return feature
    return None


def ring_centroid(ring: Sequence[Sequence[float]]):
    """Vertex-average centroid as (lat, lon). Good enough for convex-ish rings."""
    points = ring[:-1] if len(ring) > 1 and list(ring[0]) == list(ring[-1]) else ring
    lon = sum(p[0] for p in points) / len(points)
    lat = sum(p[1] for p in points) / len(points)
    return lat, lon


# =============================================================================
# LOADING
# =============================================================================

def _first_property(properties: Dict[str, Any], keys: Sequence[str], default: str) -> str:
    for key in keys:
        value = properties.get(key)
        if value:
            return str(value)
    return default


def parse_feature_collection(geojson: Dict[str, Any], layer: str) -> List[BoundaryFeature]:
    """Convert a GeoJSON FeatureCollection into BoundaryFeatures, skipping non-areal geometry."""
    keys = LAYER_PROPERTY_KEYS[layer]
    features = []
    for index, feature in enumerate(geojson.get("features", [])):
        geometry = feature.get("geometry") or {}
        geometry_type = geometry.get("type")
        if geometry_type not in ("Polygon", "MultiPolygon"):
            continue
        properties = feature.get("properties") or {}
        features.append(BoundaryFeature(
            id=_first_property(properties, keys["id"], str(properties.get("id", index))),
            name=_first_property(properties, keys["name"], "Unknown"),
            parent_name=_first_property(properties, keys["parent"], "Unknown"),
            province_name=_first_property(properties, keys["province"], "Unknown"),
            geometry_type=geometry_type,
            coordinates=geometry.get("coordinates"),
        ))
    return features


def to_feature_collection(features: Iterable[BoundaryFeature]) -> Dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": feature.to_properties(),
                "geometry": {"type": feature.geometry_type, "coordinates": feature.coordinates},
            }
            for feature in features
        ],
    }


class BoundaryLayer:
    """One administrative layer, loaded once from a GeoJSON file."""

    def __init__(self, layer: str, file_path: str):
        if layer not in LAYER_PROPERTY_KEYS:
            raise ValueError(f"Unknown boundary layer: {layer}")
        self.layer = layer
        self.file_path = file_path
        self._features: Optional[List[BoundaryFeature]] = None
        self._lock = threading.Lock()

    @property
    def features(self) -> List[BoundaryFeature]:
        if self._features is None:
            with self._lock:
                if self._features is None:
                    self._features = self._load()
        return self._features

    def _load(self) -> List[BoundaryFeature]:
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                geojson = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load {self.layer} boundaries from {self.file_path}: {e}")
            return []

        features = parse_feature_collection(geojson, self.layer)
        logger.info(f"Loaded {len(features)} {self.layer} boundaries")
        return features

    def find_containing(self, latitude: float, longitude: float) -> Optional[BoundaryFeature]:
        return find_containing(latitude, longitude, self.features)

    def get(self, feature_id: str) -> Optional[BoundaryFeature]:
        for feature in self.features:
            if feature.id == feature_id:
                return feature
        return None

    def clear(self) -> None:
        with self._lock:
            self._features = None


class SpatialIndex:
    """
    District and ward layers behind one interface.

    Usage:
        index = SpatialIndex.from_directory("data")
        ward = index.find_ward(8.4606, -12.2684)
    """

    def __init__(self, districts: BoundaryLayer, wards: BoundaryLayer):
        self.districts = districts
        self.wards = wards

    @classmethod
    def from_directory(
        cls,
        data_dir: str = BOUNDARY_DATA_DIR,
        district_file: str = DISTRICT_BOUNDARY_FILE,
        ward_file: str = WARD_BOUNDARY_FILE,
    ) -> "SpatialIndex":
        return cls(
            districts=BoundaryLayer("district", os.path.join(data_dir, district_file)),
            wards=BoundaryLayer("ward", os.path.join(data_dir, ward_file)),
        )

    def find_ward(self, latitude: float, longitude: float) -> Optional[BoundaryFeature]:
        return self.wards.find_containing(latitude, longitude)

    def find_district(self, latitude: float, longitude: float) -> Optional[BoundaryFeature]:
        return self.districts.find_containing(latitude, longitude)

    def clear_cache(self) -> None:
        """Drop cached geometry; the next query reloads from disk."""
        self.districts.clear()
        self.wards.clear()
        logger.info("Boundary caches cleared")
