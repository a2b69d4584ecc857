"""
Leaderboard Aggregator

Read-only rollup of per-identity contributions computed from the problem,
upvote, verification and offer tables. Nothing is cached; every call
reflects the current rows.

Ranking:
- metric "all": composite order (reports, then offers, then upvotes)
- any other metric: that single count, descending
Ties fall back to identity so the order is stable.
"""
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.db_models import ProblemDB, ResolutionOfferDB, UpvoteDB, VerificationDB
from ...models.domain import RankedEntry
from ..errors import ValidationError
from ..validation import mask_identity, require_identity


logger = logging.getLogger(__name__)

SCORE_WEIGHTS = {
    "problems_reported": 10,
    "upvotes_given": 1,
    "verifications_given": 5,
    "responses_offered": 3,
}

# (minimum total contributions, badge), highest first
BADGES = [
    (50, "Super Hero"),
    (25, "Civic Champion"),
    (10, "Community Leader"),
    (5, "Active Citizen"),
    (1, "Novice Reporter"),
    (0, "New Member"),
]

METRIC_FIELDS = {
    "problems": "problems_reported",
    "upvotes": "upvotes_given",
    "verifications": "verifications_given",
    "responses": "responses_offered",
    "resolutions": "resolutions_completed",
}
COMPOSITE_ORDER = ("problems_reported", "responses_offered", "upvotes_given")

COUNT_FIELDS = (
    "problems_reported",
    "upvotes_given",
    "verifications_given",
    "responses_offered",
    "resolutions_completed",
)


def calculate_score(stats: Dict[str, int]) -> int:
    return sum(stats.get(key, 0) * weight for key, weight in SCORE_WEIGHTS.items())


def badge_for(total_contributions: int) -> str:
    for minimum, badge in BADGES:
        if total_contributions >= minimum:
            return badge
    return BADGES[-1][1]


class LeaderboardAggregator:

    def __init__(self, db: Session):
        self.db = db

    def _grouped_counts(self, identity_column, filters=()) -> Dict[str, int]:
        query = self.db.query(identity_column, func.count()).group_by(identity_column)
        for condition in filters:
            query = query.filter(condition)
        return {identity: count for identity, count in query.all()}

    def collect_stats(self) -> Dict[str, Dict[str, int]]:
        """identity -> counts for every identity that did anything."""
        sources = {
            "problems_reported": self._grouped_counts(ProblemDB.reporter_identity),
            "upvotes_given": self._grouped_counts(UpvoteDB.voter_identity),
            "verifications_given": self._grouped_counts(VerificationDB.verifier_identity),
            "responses_offered": self._grouped_counts(ResolutionOfferDB.volunteer_identity),
            "resolutions_completed": self._grouped_counts(
                ResolutionOfferDB.volunteer_identity,
                filters=(ResolutionOfferDB.resolved_problem.is_(True),),
            ),
        }

        stats: Dict[str, Dict[str, int]] = defaultdict(lambda: {key: 0 for key in COUNT_FIELDS})
        for field, counts in sources.items():
            for identity, count in counts.items():
                stats[identity][field] = count
        return dict(stats)

    def get_leaderboard(self, metric: Optional[str] = "all", limit: int = 10, mask: bool = True) -> List[RankedEntry]:
        metric = (metric or "all").lower()
        if metric != "all" and metric not in METRIC_FIELDS:
            raise ValidationError(
                f"Unknown leaderboard metric '{metric}'. Use all, {', '.join(METRIC_FIELDS)}"
            )
        limit = min(max(limit, 1), 50)

        stats = self.collect_stats()
        if metric == "all":
            order = COMPOSITE_ORDER
        else:
            order = (METRIC_FIELDS[metric],)

        ranked = sorted(
            stats.items(),
            key=lambda item: tuple(-item[1][field] for field in order) + (item[0],),
        )
        if metric != "all":
            ranked = [item for item in ranked if item[1][order[0]] > 0]

        entries = []
        for rank, (identity, counts) in enumerate(ranked[:limit], start=1):
            entries.append(self._entry(rank, identity, counts, mask))

        logger.info(f"Leaderboard built: metric={metric}, {len(entries)} of {len(stats)} contributors")
        return entries

    def get_user_stats(self, identity: str) -> Dict[str, object]:
        """Unmasked stats for one identity, including its composite rank."""
        identity = require_identity(identity)
        stats = self.collect_stats()
        counts = stats.get(identity, {key: 0 for key in COUNT_FIELDS})

        rank = None
        if identity in stats:
            ordered = sorted(
                stats.items(),
                key=lambda item: tuple(-item[1][field] for field in COMPOSITE_ORDER) + (item[0],),
            )
            rank = [i for i, _ in ordered].index(identity) + 1

        return self._entry(rank or 0, identity, counts, mask=False).to_dict()

    @staticmethod
    def _entry(rank: int, identity: str, counts: Dict[str, int], mask: bool) -> RankedEntry:
        total = (
            counts["problems_reported"]
            + counts["upvotes_given"]
            + counts["verifications_given"]
            + counts["responses_offered"]
        )
        return RankedEntry(
            rank=rank,
            identity=mask_identity(identity) if mask else identity,
            problems_reported=counts["problems_reported"],
            upvotes_given=counts["upvotes_given"],
            verifications_given=counts["verifications_given"],
            responses_offered=counts["responses_offered"],
            resolutions_completed=counts["resolutions_completed"],
            total_contributions=total,
            score=calculate_score(counts),
            badge=badge_for(total),
        )
