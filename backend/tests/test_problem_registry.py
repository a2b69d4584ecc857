"""
Tests for the Problem Registry state machine, creation and reporter edits.

Test Coverage:
1. Creation with and without location, ward assignment
2. Allowed / forbidden transitions, terminal states, monotonic status
3. Compare-and-set refusal when the row moved underneath
4. Owner-only edits
5. Timeline events for creation and transitions
"""
import pytest

from crowdsource.models.db_models import (
    LocationSource, ProblemDB, ProblemStatus, TimelineEventType,
)
from crowdsource.models.domain import LiveCoordinates, LocationConfidence, LocationResult
from crowdsource.services.errors import (
    AlreadyResolvedError, InvalidTransitionError, NotOwnerError, PreconditionError,
    ProblemNotFoundError, ValidationError,
)
from crowdsource.services.geo.geocoder import PlaceMatch
from crowdsource.services.geo.location_resolver import LocationResolver
from crowdsource.services.problems.registry import STATE_CONFIG, can_transition, is_terminal

from conftest import DISTRICT_ONLY_POINT, FakeGeocoder, REPORT_POINT


REPORTER = "+23276000001"


def live_location(lat, lon, confidence=LocationConfidence.MEDIUM):
    return LocationResult(
        confidence=confidence,
        source=LocationSource.LIVE_SHARE,
        latitude=lat,
        longitude=lon,
        normalized_text="Koya",
    )


# =============================================================================
# TEST: STATE CONFIG
# =============================================================================

class TestStateConfig:

    def test_all_states_configured(self):
        assert set(STATE_CONFIG) == set(ProblemStatus)

    def test_forward_transitions(self):
        assert can_transition(ProblemStatus.REPORTED, ProblemStatus.IN_REVIEW)
        assert can_transition(ProblemStatus.REPORTED, ProblemStatus.IN_PROGRESS)
        assert can_transition(ProblemStatus.IN_REVIEW, ProblemStatus.IN_PROGRESS)
        assert can_transition(ProblemStatus.IN_PROGRESS, ProblemStatus.RESOLVED)

    def test_no_regression(self):
        assert not can_transition(ProblemStatus.IN_PROGRESS, ProblemStatus.REPORTED)
        assert not can_transition(ProblemStatus.IN_REVIEW, ProblemStatus.REPORTED)
        assert not can_transition(ProblemStatus.REPORTED, ProblemStatus.RESOLVED)

    def test_terminal_states(self):
        assert is_terminal(ProblemStatus.RESOLVED)
        assert is_terminal(ProblemStatus.REJECTED)
        for target in ProblemStatus:
            assert not can_transition(ProblemStatus.RESOLVED, target)
            assert not can_transition(ProblemStatus.REJECTED, target)


# =============================================================================
# TEST: CREATE
# =============================================================================

class TestCreate:

    def test_report_without_location(self, registry):
        """title='Broken pipe', no coordinates -> not verified, no source"""
        problem = registry.create(REPORTER, "Broken pipe", "Water everywhere since Monday")

        assert problem.id is not None
        assert problem.status == ProblemStatus.REPORTED
        assert problem.location_verified is False
        assert problem.location_source is None
        assert problem.upvote_count == 0
        assert problem.verification_count == 0
        assert problem.resolution_proof == []

    def test_report_assigns_ward_and_district(self, registry):
        problem = registry.create(REPORTER, "Pothole", "Deep pothole", live_location(*REPORT_POINT))

        assert problem.ward_id == "SL030401"
        assert problem.ward_name == "Koya"
        assert problem.district_name == "Port Loko"
        assert problem.location_source == LocationSource.LIVE_SHARE
        assert problem.location_confidence == "medium"
        assert problem.location_verified is False

    def test_high_confidence_sets_location_verified(self, registry):
        problem = registry.create(
            REPORTER, "Pothole", "Deep pothole",
            live_location(*REPORT_POINT, confidence=LocationConfidence.HIGH),
        )
        assert problem.location_verified is True

    def test_district_only_when_no_ward_contains_point(self, registry):
        problem = registry.create(REPORTER, "Fallen tree", "Blocking the road", live_location(*DISTRICT_ONLY_POINT))
        assert problem.ward_id is None
        assert problem.district_name == "Port Loko"

    def test_creation_writes_reported_event(self, registry):
        problem = registry.create(REPORTER, "Broken pipe", "Leak")
        events = registry.timeline.get_timeline(problem.id)

        assert [e["event_type"] for e in events] == ["REPORTED"]
        assert events[0]["actor"] == REPORTER
        assert events[0]["metadata"]["title"] == "Broken pipe"

    @pytest.mark.parametrize("reporter,title,description", [
        ("", "Title", "Description"),
        (REPORTER, "   ", "Description"),
        (REPORTER, "Title", None),
    ])
    def test_validation_errors_are_not_persisted(self, db, registry, reporter, title, description):
        with pytest.raises(ValidationError):
            registry.create(reporter, title, description)
        assert db.query(ProblemDB).count() == 0

    def test_get_unknown_problem(self, registry):
        with pytest.raises(ProblemNotFoundError):
            registry.get(999)


# =============================================================================
# TEST: TRANSITIONS
# =============================================================================

class TestTransitions:

    def test_admin_review_then_reject(self, registry):
        problem = registry.create(REPORTER, "Broken pipe", "Leak")

        registry.transition(problem.id, ProblemStatus.IN_REVIEW, actor_identity="admin")
        assert problem.status == ProblemStatus.IN_REVIEW

        registry.transition(problem.id, ProblemStatus.REJECTED, actor_identity="admin", reason="duplicate report")
        assert problem.status == ProblemStatus.REJECTED

        stats = registry.timeline.get_timeline_stats(problem.id)
        assert stats == {"REPORTED": 1, "STATUS_CHANGED": 1, "REJECTED": 1}

    def test_rejected_cannot_move(self, registry):
        problem = registry.create(REPORTER, "Broken pipe", "Leak")
        registry.transition(problem.id, ProblemStatus.REJECTED)

        with pytest.raises(InvalidTransitionError):
            registry.transition(problem.id, ProblemStatus.IN_REVIEW)

    def test_workflow_targets_not_settable_directly(self, registry):
        problem = registry.create(REPORTER, "Broken pipe", "Leak")
        with pytest.raises(ValidationError):
            registry.transition(problem.id, ProblemStatus.RESOLVED)
        with pytest.raises(ValidationError):
            registry.transition(problem.id, ProblemStatus.IN_PROGRESS)

    def test_compare_and_set_refuses_stale_state(self, db, registry):
        problem = registry.create(REPORTER, "Broken pipe", "Leak")

        # Another writer rejects the problem; our in-memory copy still says REPORTED
        db.query(ProblemDB).filter(ProblemDB.id == problem.id).update({"status": ProblemStatus.REJECTED})
        db.commit()
        problem.status = ProblemStatus.REPORTED

        with pytest.raises(InvalidTransitionError):
            with registry.transaction():
                registry.apply_transition(problem, ProblemStatus.IN_REVIEW)

        db.expire_all()
        assert registry.get(problem.id).status == ProblemStatus.REJECTED

    def test_resolve_requires_in_progress(self, registry):
        problem = registry.create(REPORTER, "Broken pipe", "Leak")
        with pytest.raises(InvalidTransitionError):
            with registry.transaction():
                registry.resolve(problem, "+23276000009", "https://images.test/p.jpg")

    def test_resolve_twice_is_already_resolved(self, registry):
        problem = registry.create(REPORTER, "Broken pipe", "Leak")
        with registry.transaction():
            registry.advance_to_in_progress(problem, "+23276000009")
        with registry.transaction():
            registry.resolve(problem, "+23276000009", "https://images.test/p.jpg", "Fixed the joint")

        assert problem.status == ProblemStatus.RESOLVED
        assert problem.resolution_proof == ["https://images.test/p.jpg"]

        with pytest.raises(AlreadyResolvedError):
            with registry.transaction():
                registry.resolve(problem, "+23276000010", "https://images.test/q.jpg")

        assert problem.resolved_by == "+23276000009"
        assert problem.resolution_notes == "Fixed the joint"

    def test_advance_is_noop_when_already_in_progress(self, registry):
        problem = registry.create(REPORTER, "Broken pipe", "Leak")
        with registry.transaction():
            registry.advance_to_in_progress(problem, "+23276000009")
        with registry.transaction():
            registry.advance_to_in_progress(problem, "+23276000010")

        stats = registry.timeline.get_timeline_stats(problem.id)
        assert stats["STATUS_CHANGED"] == 1


# =============================================================================
# TEST: REPORTER EDITS
# =============================================================================

class TestReporterEdits:

    def test_update_location_reassigns_ward(self, registry):
        problem = registry.create(REPORTER, "Pothole", "Deep pothole")
        resolver = LocationResolver(FakeGeocoder(reverse=PlaceMatch("Koya Junction", exact=True)))

        registry.update_location(problem.id, REPORTER, LiveCoordinates(*REPORT_POINT), resolver)

        assert problem.ward_name == "Koya"
        assert problem.location_verified is True
        assert problem.location_source == LocationSource.LIVE_SHARE
        events = [e["event_type"] for e in registry.timeline.get_timeline(problem.id)]
        assert events == ["REPORTED", "LOCATION_UPDATED"]

    def test_update_location_owner_only(self, registry):
        problem = registry.create(REPORTER, "Pothole", "Deep pothole")
        resolver = LocationResolver(FakeGeocoder())

        with pytest.raises(NotOwnerError):
            registry.update_location(problem.id, "+23276999999", LiveCoordinates(*REPORT_POINT), resolver)

    def test_update_description(self, registry):
        problem = registry.create(REPORTER, "Pothole", "Deep pothole")
        registry.update_description(problem.id, REPORTER, title="Huge pothole", location_text="Wilkinson Rd")

        assert problem.title == "Huge pothole"
        assert problem.location_text == "Wilkinson Rd"

    def test_update_description_needs_a_field(self, registry):
        problem = registry.create(REPORTER, "Pothole", "Deep pothole")
        with pytest.raises(ValidationError):
            registry.update_description(problem.id, REPORTER)

    def test_terminal_problem_cannot_be_edited(self, registry):
        problem = registry.create(REPORTER, "Pothole", "Deep pothole")
        registry.transition(problem.id, ProblemStatus.REJECTED)

        with pytest.raises(PreconditionError):
            registry.update_description(problem.id, REPORTER, title="New title")

    def test_recent_problems_for_reporter(self, registry):
        for i in range(4):
            registry.create(REPORTER, f"Problem {i}", "Details")
        registry.create("+23276000002", "Someone else", "Details")

        recent = registry.list_for_reporter(REPORTER, limit=3)
        assert [p.title for p in recent] == ["Problem 3", "Problem 2", "Problem 1"]
        assert len(registry.list_for_reporter(REPORTER, limit=50)) == 4
