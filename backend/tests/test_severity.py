"""
Tests for severity scoring and the severity-ordered problem listing.
"""
from datetime import datetime, timedelta

import pytest

from crowdsource.models.db_models import ProblemCategory, ProblemStatus
from crowdsource.services.problems.severity import calculate_severity, severity_level


NOW = datetime(2026, 3, 1, 12, 0, 0)
REPORTER = "+23276000001"


def score(upvotes=0, verifications=0, category=ProblemCategory.OTHER,
          status=ProblemStatus.REPORTED, age_days=0):
    return calculate_severity(
        upvotes, verifications, category, status, NOW - timedelta(days=age_days), now=NOW
    )


class TestCalculateSeverity:

    def test_fresh_unsupported_problem_scores_category_only(self):
        """New OTHER problem, no votes → 30 * 0.25."""
        result = score()
        assert result.upvote_score == 0
        assert result.age_score == 0
        assert result.total_score == pytest.approx(7.5)
        assert result.level == "low"

    def test_weighted_components(self):
        """Safety, 9 upvotes, 9 verifications, 30 days → 20 + 20 + 25 + 9."""
        result = score(upvotes=9, verifications=9, category=ProblemCategory.SAFETY, age_days=30)
        assert result.upvote_score == pytest.approx(50)
        assert result.verification_score == pytest.approx(60)
        assert result.age_score == pytest.approx(100)
        assert result.total_score == pytest.approx(74.0)
        assert result.level == "high"

    def test_components_are_capped(self):
        result = score(upvotes=5000, verifications=5000, category=ProblemCategory.SAFETY, age_days=365)
        assert result.upvote_score == 100
        assert result.verification_score == 100
        assert result.age_score == 100
        assert result.total_score == pytest.approx(100)
        assert result.level == "critical"

    @pytest.mark.parametrize("status,expected", [
        (ProblemStatus.IN_REVIEW, 66.6),
        (ProblemStatus.IN_PROGRESS, 51.8),
        (ProblemStatus.RESOLVED, 7.4),
        (ProblemStatus.REJECTED, 0.0),
    ])
    def test_status_multiplier(self, status, expected):
        result = score(upvotes=9, verifications=9, category=ProblemCategory.SAFETY, age_days=30, status=status)
        assert result.total_score == pytest.approx(expected)

    def test_unknown_category_uses_default_urgency(self):
        assert score(category=None).category_score == 30

    def test_future_timestamp_has_no_age(self):
        assert score(age_days=-2).age_score == 0


class TestSeverityLevel:

    @pytest.mark.parametrize("value,level", [
        (100, "critical"), (75, "critical"), (74.99, "high"), (50, "high"),
        (49.99, "medium"), (25, "medium"), (24.99, "low"), (0, "low"),
    ])
    def test_thresholds(self, value, level):
        assert severity_level(value) == level


@pytest.fixture
def ranked(engine):
    drain = engine.report_problem(REPORTER, "Blocked drain", "Overflowing", category=ProblemCategory.SANITATION)
    pothole = engine.report_problem(REPORTER, "Pothole", "Deep", category=ProblemCategory.INFRASTRUCTURE)
    wire = engine.report_problem(REPORTER, "Exposed wire", "Sparking", category=ProblemCategory.SAFETY)
    junk = engine.report_problem(REPORTER, "Not a problem", "Spam", category=ProblemCategory.SAFETY)

    for i in range(9):
        engine.upvote(pothole.id, f"+2327600010{i}")
    engine.registry.transition(junk.id, ProblemStatus.REJECTED, reason="spam")
    return drain, pothole, wire, junk


class TestSeverityListing:

    def test_open_problems_ranked_highest_first(self, engine, ranked):
        """Pothole 35, wire 25, drain 20; rejected problem left out."""
        drain, pothole, wire, junk = ranked
        rows = engine.queries.list_by_severity()

        assert [r["id"] for r in rows] == [pothole.id, wire.id, drain.id]
        assert rows[0]["severity_level"] == "medium"
        assert rows[0]["severity"]["upvote_score"] == pytest.approx(50)

    def test_min_severity(self, engine, ranked):
        drain, pothole, wire, _ = ranked
        rows = engine.queries.list_by_severity(min_severity=24)
        assert [r["id"] for r in rows] == [pothole.id, wire.id]

    def test_paging(self, engine, ranked):
        _, _, wire, _ = ranked
        rows = engine.queries.list_by_severity(limit=1, offset=1)
        assert [r["id"] for r in rows] == [wire.id]

    def test_status_filter(self, engine, ranked):
        *_, junk = ranked
        rows = engine.queries.list_by_severity(status=ProblemStatus.REJECTED)
        assert [r["id"] for r in rows] == [junk.id]
        assert rows[0]["severity_score"] == 0

    def test_age_score_saturates_after_thirty_days(self, engine, ranked):
        drain, *_ = ranked
        rows = engine.queries.list_by_severity(now=datetime.utcnow() + timedelta(days=30))
        drain_row = next(r for r in rows if r["id"] == drain.id)
        assert drain_row["severity"]["age_score"] == pytest.approx(100, abs=0.01)

    def test_details_carry_severity(self, engine, ranked):
        _, pothole, _, _ = ranked
        data = engine.queries.get_problem(pothole.id)
        assert data["severity"]["level"] == "medium"
