"""
RatingAggregationService - recalculates user ratings.

One recalculation reads resolved predictions and point adjustments, merges
them, ranks the result and writes summary + streak rows, all inside a single
transaction with a timeout. Only the unrestricted run (every user) also
appends leaderboard snapshots; targeted runs skip them.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from app.cache import USER_RATING_PREFIX, CacheBackend
from app.core.config import Settings, get_settings
from app.database import transaction
from app.models.rating import LeaderboardSnapshot, RatingScope, RatingWindows
from app.repositories.adjustment_repository import PointAdjustmentRepository
from app.repositories.prediction_repository import PredictionEntryRepository
from app.repositories.rating_repository import RatingRepository
from app.services.rating_calculator import (
    AggregatedUserRating,
    merge_user_ratings,
    rank_entries,
    top_for_scope,
)
from app.services.rating_settings import compute_windows

logger = logging.getLogger(__name__)


class RatingServiceError(Exception):
    """Base exception for rating service errors."""
    pass


class RecalculationError(RatingServiceError):
    """Raised when a recalculation was rolled back."""
    transient = False


class RecalculationTimeoutError(RecalculationError):
    """Raised when the recalculation transaction ran past its timeout."""
    transient = True


class AggregationContext(BaseModel):
    captured_at: datetime
    windows: RatingWindows
    entries: list[AggregatedUserRating]
    full: bool


def build_snapshots(
    entries: list[AggregatedUserRating],
    captured_at: datetime,
    limit: int,
) -> list[LeaderboardSnapshot]:
    """Top `limit` per scope, ranked by that scope's points"""
    snapshots = []
    for scope, field in ((RatingScope.CURRENT, "seasonal_points"), (RatingScope.YEARLY, "yearly_points")):
        for rank, entry in enumerate(top_for_scope(entries, field, limit), start=1):
            snapshots.append(LeaderboardSnapshot(
                user_id=entry.user_id,
                scope=scope,
                rank=rank,
                points=getattr(entry, field),
                captured_at=captured_at,
                payload={
                    "total_points": entry.total_points,
                    "seasonal_points": entry.seasonal_points,
                    "yearly_points": entry.yearly_points,
                    "level": entry.level.value,
                },
            ))
    return snapshots


class RatingAggregationService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        settings: Optional[Settings] = None,
        cache: Optional[CacheBackend] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.cache = cache
        self.prediction_repo = PredictionEntryRepository(db)
        self.adjustment_repo = PointAdjustmentRepository(db)
        self.rating_repo = RatingRepository(db)

    async def recalculate(self, user_ids: Optional[Iterable[str]] = None) -> AggregationContext:
        """
        Recalculate ratings for every user, or only for `user_ids`.

        Raises RecalculationTimeoutError (transient) when the transaction
        doesn't finish in time and RecalculationError for driver failures.
        Either way nothing is committed; retrying is up to the caller.
        """
        targeted = sorted({uid for uid in (user_ids or []) if uid})
        captured_at = datetime.now(timezone.utc)
        timeout = self.settings.recalculation_timeout_seconds

        try:
            context = await asyncio.wait_for(self._run(captured_at, targeted or None), timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Rating recalculation timed out after %ss (users=%s)", timeout, len(targeted) or "all")
            raise RecalculationTimeoutError(f"Recalculation exceeded {timeout}s") from exc
        except PyMongoError as exc:
            logger.error("Rating recalculation rolled back: %s", exc)
            raise RecalculationError(str(exc)) from exc

        logger.info(
            "Ratings recalculated: %d users (%s), current window %s..%s, yearly window %s..%s",
            len(context.entries),
            "full" if context.full else "targeted",
            context.windows.current_window_start.isoformat(),
            context.windows.current_window_end.isoformat(),
            context.windows.yearly_window_start.isoformat(),
            context.windows.yearly_window_end.isoformat(),
        )

        if context.full and self.cache is not None:
            await self._invalidate_user_ratings()
        return context

    async def _invalidate_user_ratings(self) -> None:
        """Cached per-user summaries are stale after a full run; the ratings are already committed"""
        try:
            await self.cache.invalidate_prefix(USER_RATING_PREFIX)
        except Exception:
            logger.warning("Cache invalidation after recalculation failed", exc_info=True)

    async def _run(self, captured_at: datetime, user_ids: Optional[list[str]]) -> AggregationContext:
        max_commit_ms = int(self.settings.recalculation_timeout_seconds * 1000)

        async with transaction(self.db, max_commit_time_ms=max_commit_ms) as session:
            windows = await compute_windows(self.db, captured_at, session=session)

            activity = await self.prediction_repo.extract(windows, user_ids, session=session)
            adjustments = await self.adjustment_repo.sum_by_user(user_ids, session=session)

            entries = rank_entries(merge_user_ratings(activity, adjustments, user_ids))

            await self.rating_repo.upsert_ratings(
                entries,
                captured_at,
                chunk_size=self.settings.upsert_chunk_size,
                session=session,
            )

            # Los recálculos por usuario no generan snapshots
            if not user_ids:
                snapshots = build_snapshots(entries, captured_at, self.settings.rating_snapshot_limit)
                await self.rating_repo.append_snapshots(snapshots, session=session)
            else:
                # Los ranks se repasan sobre todos los MYTHIC, no solo los recalculados
                ranks = await self.rating_repo.reassign_mythic_ranks(session=session)
                for entry in entries:
                    entry.mythic_rank = ranks.get(entry.user_id)

        return AggregationContext(
            captured_at=captured_at,
            windows=windows,
            entries=entries,
            full=not user_ids,
        )
