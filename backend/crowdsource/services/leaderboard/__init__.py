from .aggregator import LeaderboardAggregator, badge_for, calculate_score

__all__ = ["LeaderboardAggregator", "badge_for", "calculate_score"]
