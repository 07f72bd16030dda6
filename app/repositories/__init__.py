from .adjustment_repository import PointAdjustmentRepository
from .prediction_repository import PredictionEntryRepository
from .rating_repository import RatingRepository
from .reward_job_repository import RewardJobQueue
from .reward_repository import AchievementRewardRepository
from .settings_repository import RatingSettingsRepository, SeasonRepository
from .user_repository import UserRepository

__all__ = [
    "PointAdjustmentRepository",
    "PredictionEntryRepository",
    "RatingRepository",
    "RewardJobQueue",
    "AchievementRewardRepository",
    "RatingSettingsRepository",
    "SeasonRepository",
    "UserRepository",
]
