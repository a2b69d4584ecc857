"""
Severity scoring for prioritizing open problems.

Four component scores, each on 0-100:
    upvotes        log10(upvotes + 1) * 50
    age            days since report / 30 * 100
    category       fixed urgency per category
    verifications  log10(verifications + 1) * 60

The weighted sum is scaled by a status multiplier, so work already under way
sinks and closed problems drop out.
"""
import math
from datetime import datetime
from typing import Optional

from ...models.db_models import ProblemCategory, ProblemDB, ProblemStatus
from ...models.domain import SeverityBreakdown


CATEGORY_URGENCY = {
    ProblemCategory.SAFETY: 100,
    ProblemCategory.SANITATION: 80,
    ProblemCategory.UTILITIES: 70,
    ProblemCategory.INFRASTRUCTURE: 60,
    ProblemCategory.OTHER: 30,
}
DEFAULT_URGENCY = 30

STATUS_MULTIPLIERS = {
    ProblemStatus.REPORTED: 1.0,
    ProblemStatus.IN_REVIEW: 0.9,
    ProblemStatus.IN_PROGRESS: 0.7,
    ProblemStatus.RESOLVED: 0.1,
    ProblemStatus.REJECTED: 0.0,
}

WEIGHTS = {
    "upvotes": 0.40,
    "age": 0.20,
    "category": 0.25,
    "verifications": 0.15,
}

# A problem reaches the full age score after this many days
AGE_SATURATION_DAYS = 30

LEVELS = (
    (75, "critical"),
    (50, "high"),
    (25, "medium"),
)


def calculate_severity(
    upvote_count: int,
    verification_count: int,
    category: Optional[ProblemCategory],
    status: ProblemStatus,
    created_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> SeverityBreakdown:
    now = now or datetime.utcnow()

    upvote_score = min(100.0, math.log10(max(upvote_count, 0) + 1) * 50)

    age_days = 0.0
    if created_at is not None:
        age_days = max(0.0, (now - created_at).total_seconds() / 86400)
    age_score = min(100.0, age_days / AGE_SATURATION_DAYS * 100)

    category_score = float(CATEGORY_URGENCY.get(category, DEFAULT_URGENCY))
    verification_score = min(100.0, math.log10(max(verification_count, 0) + 1) * 60)
    multiplier = STATUS_MULTIPLIERS.get(status, 1.0)

    weighted = (
        upvote_score * WEIGHTS["upvotes"]
        + age_score * WEIGHTS["age"]
        + category_score * WEIGHTS["category"]
        + verification_score * WEIGHTS["verifications"]
    )
    total = round(weighted * multiplier, 2)

    return SeverityBreakdown(
        upvote_score=round(upvote_score, 2),
        age_score=round(age_score, 2),
        category_score=category_score,
        verification_score=round(verification_score, 2),
        status_multiplier=multiplier,
        total_score=total,
        level=severity_level(total),
    )


def problem_severity(problem: ProblemDB, now: Optional[datetime] = None) -> SeverityBreakdown:
    return calculate_severity(
        problem.upvote_count or 0,
        problem.verification_count or 0,
        problem.category,
        problem.status,
        problem.created_at,
        now=now,
    )


def severity_level(score: float) -> str:
    """Bucket a total score into critical / high / medium / low."""
    for threshold, level in LEVELS:
        if score >= threshold:
            return level
    return "low"
