from .rating import (
    AdjustmentTotals,
    LeaderboardSnapshot,
    PointAdjustment,
    PredictionStatus,
    RatingLevel,
    RatingScope,
    RatingSeason,
    RatingSettings,
    RatingWindows,
    SeasonWinner,
    StreakState,
    UserRatingSummary,
)
from .reward import AchievementReward, RewardJob, RewardJobPayload, RewardJobStats, RewardJobStatus
from .leaderboard import LeaderboardEntry, LeaderboardPage, UserRatingView
from .user import UserProfile

__all__ = [
    "AdjustmentTotals",
    "LeaderboardSnapshot",
    "PointAdjustment",
    "PredictionStatus",
    "RatingLevel",
    "RatingScope",
    "RatingSeason",
    "RatingSettings",
    "RatingWindows",
    "SeasonWinner",
    "StreakState",
    "UserRatingSummary",
    "AchievementReward",
    "RewardJob",
    "RewardJobPayload",
    "RewardJobStats",
    "RewardJobStatus",
    "LeaderboardEntry",
    "LeaderboardPage",
    "UserRatingView",
    "UserProfile",
]
