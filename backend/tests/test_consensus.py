"""
Tests for the Consensus Engine.

Test Coverage:
1. Upvote uniqueness and counter invariant
2. Verification uniqueness, threshold and location_verified
3. Spatial accuracy: accurate / spread out / insufficient data
4. Racing duplicate insert reported as not accepted
"""
import pytest
from sqlalchemy.exc import IntegrityError

from crowdsource.models.db_models import (
    LocationSource, ProblemDB, ProblemStatus, UpvoteDB, VerificationDB,
)
from crowdsource.models.domain import AccuracyClass, LocationConfidence, LocationResult
from crowdsource.services.errors import ProblemNotFoundError, ValidationError
from crowdsource.services.problems.consensus import ConsensusEngine, classify_spread

from conftest import REPORT_POINT


REPORTER = "+23276000001"
VOTERS = ["+23276100001", "+23276100002", "+23276100003", "+23276100004"]


@pytest.fixture
def consensus(db, registry):
    return ConsensusEngine(db, registry, threshold=3, radius_m=50.0)


@pytest.fixture
def problem(registry):
    return registry.create(REPORTER, "Broken pipe", "Water everywhere")


@pytest.fixture
def located_problem(registry):
    location = LocationResult(
        confidence=LocationConfidence.MEDIUM,
        source=LocationSource.LIVE_SHARE,
        latitude=REPORT_POINT[0],
        longitude=REPORT_POINT[1],
    )
    return registry.create(REPORTER, "Broken pipe", "Water everywhere", location)


def assert_counters_match_rows(db, problem_id):
    problem = db.get(ProblemDB, problem_id)
    db.refresh(problem)
    assert problem.upvote_count == db.query(UpvoteDB).filter(UpvoteDB.problem_id == problem_id).count()
    assert problem.verification_count == db.query(VerificationDB).filter(VerificationDB.problem_id == problem_id).count()


# =============================================================================
# TEST: UPVOTES
# =============================================================================

class TestUpvote:

    def test_first_upvote_accepted(self, consensus, problem):
        result = consensus.upvote(problem.id, VOTERS[0])

        assert result.accepted is True
        assert result.new_count == 1
        assert result.title == "Broken pipe"

    def test_second_upvote_same_identity_is_noop(self, db, consensus, problem):
        consensus.upvote(problem.id, VOTERS[0])
        result = consensus.upvote(problem.id, VOTERS[0])

        assert result.accepted is False
        assert result.new_count == 1
        assert db.query(UpvoteDB).count() == 1

    def test_counter_matches_rows(self, db, consensus, problem):
        for voter in VOTERS + VOTERS[:2]:
            consensus.upvote(problem.id, voter)

        assert_counters_match_rows(db, problem.id)
        assert db.get(ProblemDB, problem.id).upvote_count == 4

    def test_upvote_writes_timeline_event(self, consensus, registry, problem):
        consensus.upvote(problem.id, VOTERS[0])
        consensus.upvote(problem.id, VOTERS[0])

        assert registry.timeline.get_timeline_stats(problem.id)["UPVOTED"] == 1

    def test_unknown_problem(self, consensus):
        with pytest.raises(ProblemNotFoundError):
            consensus.upvote(404, VOTERS[0])

    def test_missing_identity(self, consensus, problem):
        with pytest.raises(ValidationError):
            consensus.upvote(problem.id, "  ")

    def test_racing_duplicate_rolls_back_and_reports_not_accepted(self, db, consensus, problem, monkeypatch):
        consensus.upvote(problem.id, VOTERS[0])

        # The pre-check misses the existing row, as it would for a concurrent insert
        monkeypatch.setattr(consensus, "has_upvoted", lambda problem_id, identity: False)
        result = consensus.upvote(problem.id, VOTERS[0])

        assert result.accepted is False
        assert result.new_count == 1
        assert_counters_match_rows(db, problem.id)


# =============================================================================
# TEST: VERIFICATIONS
# =============================================================================

class TestVerify:

    def test_threshold_sets_location_verified(self, db, consensus, problem):
        lat, lon = REPORT_POINT
        results = [consensus.verify(problem.id, v, lat, lon) for v in VOTERS[:3]]

        assert [r.new_count for r in results] == [1, 2, 3]
        assert [r.threshold_reached for r in results] == [False, False, True]
        assert results[1].location_verified is False
        assert results[2].location_verified is True
        assert db.get(ProblemDB, problem.id).location_verified is True

    def test_beyond_threshold_keeps_flag_and_counts(self, db, consensus, problem):
        lat, lon = REPORT_POINT
        for v in VOTERS:
            result = consensus.verify(problem.id, v, lat, lon)

        assert result.new_count == 4
        assert result.location_verified is True
        assert_counters_match_rows(db, problem.id)

    def test_threshold_does_not_change_status(self, db, consensus, problem):
        lat, lon = REPORT_POINT
        for v in VOTERS[:3]:
            consensus.verify(problem.id, v, lat, lon)
        assert db.get(ProblemDB, problem.id).status == ProblemStatus.REPORTED

    def test_duplicate_verification_is_noop(self, db, consensus, problem):
        consensus.verify(problem.id, VOTERS[0], *REPORT_POINT)
        result = consensus.verify(problem.id, VOTERS[0], 8.5, -12.3)

        assert result.accepted is False
        assert result.new_count == 1
        assert db.query(VerificationDB).count() == 1

    def test_malformed_coordinates_rejected(self, db, consensus, problem):
        with pytest.raises(ValidationError):
            consensus.verify(problem.id, VOTERS[0], 120.0, -12.3)
        with pytest.raises(ValidationError):
            consensus.verify(problem.id, VOTERS[0], None, -12.3)
        assert db.query(VerificationDB).count() == 0

    def test_image_urls_stored(self, db, consensus, problem):
        consensus.verify(problem.id, VOTERS[0], *REPORT_POINT, image_urls=["https://images.test/v1.jpg"])
        row = db.query(VerificationDB).one()
        assert row.image_urls == ["https://images.test/v1.jpg"]


# =============================================================================
# TEST: SPATIAL ACCURACY
# =============================================================================

class TestSpatialAccuracy:

    def test_three_verifiers_within_ten_meters_are_accurate(self, db, consensus, located_problem):
        """Three verifiers within 10 m of each other and the report -> accurate"""
        lat, lon = REPORT_POINT
        offsets = [(0.00002, 0.0), (0.0, 0.00002), (-0.00002, -0.00002)]

        for voter, (dlat, dlon) in zip(VOTERS, offsets):
            result = consensus.verify(located_problem.id, voter, lat + dlat, lon + dlon)

        assert result.location_verified is True
        assert result.accuracy.classification == AccuracyClass.ACCURATE
        assert result.accuracy.point_count == 4
        assert result.accuracy.max_spread_m < 10

    def test_two_verifiers_500m_apart_are_spread_out(self, consensus, problem):
        lat, lon = REPORT_POINT
        first = consensus.verify(problem.id, VOTERS[0], lat, lon)
        second = consensus.verify(problem.id, VOTERS[1], lat + 0.0045, lon)

        assert first.accuracy.classification == AccuracyClass.INSUFFICIENT_DATA
        assert second.new_count == 2
        assert second.accuracy.classification == AccuracyClass.SPREAD_OUT
        assert second.accuracy.max_spread_m == pytest.approx(500, rel=0.01)

    def test_reported_point_counts_toward_spread(self, consensus, located_problem):
        lat, lon = REPORT_POINT
        result = consensus.verify(located_problem.id, VOTERS[0], lat + 0.0045, lon)

        assert result.accuracy.point_count == 2
        assert result.accuracy.classification == AccuracyClass.SPREAD_OUT

    def test_no_points(self, consensus, problem):
        accuracy = consensus.spatial_accuracy(problem.id)
        assert accuracy.classification == AccuracyClass.INSUFFICIENT_DATA
        assert accuracy.max_spread_m is None
        assert accuracy.to_dict()["classification"] == "insufficient data"

    def test_classify_spread_boundary(self):
        # exactly at the radius is not "under" it
        points = [(0.0, 0.0), (0.0, 0.0)]
        assert classify_spread(points, 50.0).classification == AccuracyClass.ACCURATE
        assert classify_spread(points, 0.0).classification == AccuracyClass.SPREAD_OUT
