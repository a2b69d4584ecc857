from .distance import haversine_m, max_pairwise_distance_m, nearest, format_distance
from .spatial_index import (
    SpatialIndex, BoundaryLayer, find_containing, point_in_ring, to_feature_collection,
)
from .geocoder import Geocoder, NominatimGeocoder, GeocodeCandidate, PlaceMatch
from .location_resolver import LocationResolver

__all__ = [
    "haversine_m",
    "max_pairwise_distance_m",
    "nearest",
    "format_distance",
    "SpatialIndex",
    "BoundaryLayer",
    "find_containing",
    "point_in_ring",
    "to_feature_collection",
    "Geocoder",
    "NominatimGeocoder",
    "GeocodeCandidate",
    "PlaceMatch",
    "LocationResolver",
]
