"""
Tests for distance helpers and the Spatial Index.

Test Coverage:
1. Haversine distance and max pairwise spread
2. Ray casting on Polygon and MultiPolygon outer rings
3. Centroid of a boundary resolves to that boundary, far points to None
4. Lazy loading, property-key variants, load failures, cache reload
"""
import json

import pytest

from crowdsource.services.geo.distance import (
    format_distance, haversine_m, max_pairwise_distance_m, nearest,
)
from crowdsource.services.geo.spatial_index import (
    BoundaryLayer, SpatialIndex, find_containing, parse_feature_collection,
    point_in_ring, ring_centroid, to_feature_collection,
)

from conftest import DISTRICT_ONLY_POINT, OCEAN_POINT, REPORT_POINT, WARDS, square


# =============================================================================
# TEST: DISTANCE
# =============================================================================

class TestDistance:

    def test_zero_distance(self):
        assert haversine_m(8.4606, -12.2684, 8.4606, -12.2684) == pytest.approx(0.0)

    def test_one_degree_of_latitude(self):
        # 2 * pi * 6371e3 / 360
        assert haversine_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(111194.9, rel=1e-4)

    def test_max_pairwise_needs_two_points(self):
        assert max_pairwise_distance_m([]) is None
        assert max_pairwise_distance_m([(8.46, -12.26)]) is None

    def test_max_pairwise_picks_widest_pair(self):
        points = [(0.0, 0.0), (0.0, 0.001), (0.0, 0.003)]
        assert max_pairwise_distance_m(points) == pytest.approx(haversine_m(0.0, 0.0, 0.0, 0.003))

    def test_nearest_skips_missing_coordinates(self):
        candidates = [(1, None, None), (2, 8.47, -12.27), (3, 8.5, -12.3)]
        problem_id, distance = nearest(8.4606, -12.2684, candidates)
        assert problem_id == 2
        assert distance > 0

    def test_nearest_with_no_candidates(self):
        assert nearest(8.4606, -12.2684, []) is None

    def test_format_distance(self):
        assert format_distance(420.4) == "420 m"
        assert format_distance(2500) == "2.5 km"


# =============================================================================
# TEST: POINT IN POLYGON
# =============================================================================

class TestPointInPolygon:

    def test_point_inside_square(self):
        ring = square(-12.4, 8.4, -12.1, 8.6)
        assert point_in_ring(8.5, -12.2, ring) is True

    def test_point_outside_square(self):
        ring = square(-12.4, 8.4, -12.1, 8.6)
        assert point_in_ring(8.7, -12.2, ring) is False
        assert point_in_ring(8.5, -12.0, ring) is False

    def test_concave_polygon(self):
        # U shape opening north; the notch is outside
        ring = [[0, 0], [3, 0], [3, 3], [2, 3], [2, 1], [1, 1], [1, 3], [0, 3], [0, 0]]
        assert point_in_ring(0.5, 1.5, ring) is True
        assert point_in_ring(1.5, 1.5, ring) is False
        assert point_in_ring(1.5, 2.5, ring) is True

    def test_centroid_resolves_to_its_boundary(self):
        wards = parse_feature_collection(WARDS, "ward")
        koya = wards[0]
        lat, lon = ring_centroid(koya.coordinates[0])
        assert find_containing(lat, lon, wards) == koya

    def test_multipolygon_second_member_matches(self):
        wards = parse_feature_collection(WARDS, "ward")
        found = find_containing(8.47, -13.17, wards)
        assert found is not None
        assert found.name == "Freetown East"

    def test_far_point_resolves_to_none(self):
        wards = parse_feature_collection(WARDS, "ward")
        assert find_containing(*OCEAN_POINT, wards) is None

    def test_first_match_wins_in_load_order(self):
        collection = {
            "type": "FeatureCollection",
            "features": [
                {"type": "Feature", "properties": {"adm3_pcode": "A", "adm3_name": "First"},
                 "geometry": {"type": "Polygon", "coordinates": [square(0, 0, 2, 2)]}},
                {"type": "Feature", "properties": {"adm3_pcode": "B", "adm3_name": "Second"},
                 "geometry": {"type": "Polygon", "coordinates": [square(0, 0, 2, 2)]}},
            ],
        }
        boundaries = parse_feature_collection(collection, "ward")
        assert find_containing(1, 1, boundaries).id == "A"


# =============================================================================
# TEST: LOADING
# =============================================================================

class TestParseFeatureCollection:

    def test_lowercase_and_uppercase_property_keys(self, boundary_dir):
        districts = json.loads((boundary_dir / "districts.geojson").read_text())
        parsed = parse_feature_collection(districts, "district")
        assert parsed[0].id == "SL0304"
        assert parsed[0].name == "Port Loko"

        wards = parse_feature_collection(WARDS, "ward")
        assert wards[0].id == "SL030401"
        assert wards[0].parent_name == "Port Loko"
        assert wards[0].province_name == "North Western"

    def test_non_areal_geometry_is_skipped(self):
        collection = {"features": [
            {"type": "Feature", "properties": {}, "geometry": {"type": "Point", "coordinates": [0, 0]}},
        ]}
        assert parse_feature_collection(collection, "ward") == []

    def test_round_trip_to_feature_collection(self):
        wards = parse_feature_collection(WARDS, "ward")
        collection = to_feature_collection(wards)
        assert collection["type"] == "FeatureCollection"
        assert collection["features"][0]["properties"]["name"] == "Koya"
        assert collection["features"][1]["geometry"]["type"] == "MultiPolygon"


class TestSpatialIndex:

    def test_find_ward_and_district(self, spatial_index):
        ward = spatial_index.find_ward(*REPORT_POINT)
        district = spatial_index.find_district(*REPORT_POINT)
        assert ward.name == "Koya"
        assert district.name == "Port Loko"

    def test_district_without_ward(self, spatial_index):
        assert spatial_index.find_ward(*DISTRICT_ONLY_POINT) is None
        assert spatial_index.find_district(*DISTRICT_ONLY_POINT).id == "SL0304"

    def test_missing_file_yields_empty_layer(self, tmp_path):
        layer = BoundaryLayer("ward", str(tmp_path / "missing.geojson"))
        assert layer.features == []
        assert layer.find_containing(*REPORT_POINT) is None

    def test_clear_cache_reloads_from_disk(self, boundary_dir, spatial_index):
        assert len(spatial_index.wards.features) == 2

        (boundary_dir / "wards.geojson").write_text(json.dumps({"type": "FeatureCollection", "features": []}))
        assert len(spatial_index.wards.features) == 2  # still cached

        spatial_index.clear_cache()
        assert spatial_index.wards.features == []

    def test_get_by_id(self, spatial_index):
        assert spatial_index.wards.get("SL040202").name == "Freetown East"
        assert spatial_index.wards.get("nope") is None
