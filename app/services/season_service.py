"""
SeasonService - admin season overrides for the rating windows.

An open season pins its scope's window to explicit boundaries. Closing a
season archives the top users of that scope as winners.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.rating import RatingScope, RatingSeason, SeasonWinner
from app.repositories.rating_repository import RatingRepository
from app.repositories.settings_repository import SeasonRepository

logger = logging.getLogger(__name__)

DEFAULT_WINNERS_LIMIT = 3


class SeasonService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.season_repo = SeasonRepository(db)
        self.rating_repo = RatingRepository(db)

    async def start_season(
        self,
        scope: RatingScope,
        duration_days: int,
        starts_at: datetime,
    ) -> RatingSeason:
        duration = max(1, int(duration_days))
        season = RatingSeason(
            scope=scope,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(days=duration),
            duration_days=duration,
        )
        created = await self.season_repo.create(season)
        logger.info("Season started for %s: %s -> %s", scope.value, created.starts_at, created.ends_at)
        return created

    async def build_winners(self, scope: RatingScope, limit: int = DEFAULT_WINNERS_LIMIT) -> list[SeasonWinner]:
        """Top `limit` of the persisted leaderboard for the scope"""
        rows = await self.rating_repo.get_page(scope, skip=0, limit=limit)
        points_field = "yearly_points" if scope is RatingScope.YEARLY else "seasonal_points"
        return [
            SeasonWinner(
                user_id=row.user_id,
                rank=index,
                scope_points=getattr(row, points_field),
                total_points=row.total_points,
                prediction_count=row.prediction_count,
                prediction_wins=row.prediction_wins,
            )
            for index, row in enumerate(rows, start=1)
        ]

    async def close_active_season(
        self,
        scope: RatingScope,
        ended_at: datetime,
        winners_limit: int = DEFAULT_WINNERS_LIMIT,
    ) -> Optional[RatingSeason]:
        """Close the open season of `scope`; None when there is none"""
        active = await self.season_repo.get_active(scope)
        if active is None:
            return None

        winners = await self.build_winners(scope, winners_limit)
        closed = await self.season_repo.close(active.id, ended_at, winners)
        if closed:
            logger.info("Season %s closed for %s with %d winners", closed.id, scope.value, len(winners))
        return closed

    async def list_seasons(self, limit: int = 12) -> list[RatingSeason]:
        limit = limit if limit > 0 else 12
        return await self.season_repo.list_recent(limit)
