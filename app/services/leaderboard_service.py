"""
LeaderboardService - serves paginated leaderboards from the persisted ratings.

Pages are read from rating_summaries. Page one can ask for a full
recalculation first (ensure_fresh), later pages trust what is stored.
"""

from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.cache import CacheBackend
from app.core.config import Settings, get_settings
from app.models.leaderboard import LeaderboardEntry, LeaderboardPage, UserRatingView
from app.models.rating import RatingLevel, RatingScope, StreakState, UserRatingSummary
from app.repositories.rating_repository import RatingRepository
from app.repositories.user_repository import UserRepository
from app.services.rating_aggregation import RatingAggregationService
from app.services.rating_settings import compute_windows


def accuracy(wins: int, resolved: int) -> float:
    return wins / resolved if resolved > 0 else 0.0


class LeaderboardService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        settings: Optional[Settings] = None,
        cache: Optional[CacheBackend] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.rating_repo = RatingRepository(db)
        self.user_repo = UserRepository(db)
        self.aggregation = RatingAggregationService(db, self.settings, cache)

    def normalize_paging(self, page: Optional[int], page_size: Optional[int]) -> tuple[int, int]:
        """page en [1, rating_max_page], page_size en [1, rating_max_page_size]"""
        page = min(self.settings.rating_max_page, max(1, int(page or 1)))
        if page_size is None:
            page_size = self.settings.rating_default_page_size
        page_size = min(self.settings.rating_max_page_size, max(1, int(page_size)))
        return page, page_size

    async def get_page(
        self,
        scope: RatingScope,
        page: Optional[int] = 1,
        page_size: Optional[int] = None,
        ensure_fresh: bool = False,
    ) -> LeaderboardPage:
        """
        Get one leaderboard page for a scope.

        Sorted by the scope's points, then total points, then user id.
        captured_at is the newest last_recalculated_at on the page (now if
        none), callers build their cache validators from it.
        """
        page, page_size = self.normalize_paging(page, page_size)

        if ensure_fresh and page == 1:
            await self.aggregation.recalculate()

        total = await self.rating_repo.count_summaries()
        rows = await self.rating_repo.get_page(scope, skip=(page - 1) * page_size, limit=page_size)

        user_ids = [row.user_id for row in rows]
        streaks = await self.rating_repo.get_streaks(user_ids)
        profiles = await self.user_repo.get_many(user_ids)

        entries = []
        for index, row in enumerate(rows):
            streak = streaks.get(row.user_id) or StreakState(_id=row.user_id)
            profile = profiles.get(row.user_id)

            entries.append(LeaderboardEntry(
                user_id=row.user_id,
                position=(page - 1) * page_size + index + 1,
                username=profile.display_name if profile else f"Player #{row.user_id}",
                avatar_url=profile.profile_picture if profile else None,
                total_points=row.total_points,
                seasonal_points=row.seasonal_points,
                yearly_points=row.yearly_points,
                level=row.level,
                mythic_rank=row.mythic_rank,
                current_streak=streak.current_streak,
                max_streak=streak.max_streak,
                last_prediction_at=streak.last_prediction_at,
                last_resolved_at=streak.last_resolved_at,
                prediction_count=row.prediction_count,
                prediction_wins=row.prediction_wins,
                accuracy=accuracy(row.prediction_wins, row.prediction_count),
            ))

        recalculated = [row.last_recalculated_at for row in rows if row.last_recalculated_at]
        captured_at = max(recalculated) if recalculated else datetime.now(timezone.utc)
        windows = await compute_windows(self.db, captured_at)

        return LeaderboardPage(
            scope=scope,
            total=total,
            page=page,
            page_size=page_size,
            captured_at=captured_at,
            windows=windows,
            entries=entries,
        )

    async def get_user_rating(self, user_id: str) -> UserRatingView:
        """
        Rating summary of one user.

        Users never recalculated get zero points and BRONZE.
        """
        summary = await self.rating_repo.get_summary(user_id) or UserRatingSummary(_id=user_id)
        streak = await self.rating_repo.get_streak(user_id) or StreakState(_id=user_id)

        return UserRatingView(
            user_id=user_id,
            total_points=summary.total_points,
            seasonal_points=summary.seasonal_points,
            yearly_points=summary.yearly_points,
            level=summary.level or RatingLevel.BRONZE,
            mythic_rank=summary.mythic_rank,
            current_streak=streak.current_streak,
            max_streak=streak.max_streak,
            last_prediction_at=streak.last_prediction_at,
            last_resolved_at=streak.last_resolved_at,
            last_recalculated_at=summary.last_recalculated_at,
            prediction_count=summary.prediction_count,
            prediction_wins=summary.prediction_wins,
            accuracy=accuracy(summary.prediction_wins, summary.prediction_count),
        )
