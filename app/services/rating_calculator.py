"""
Rating calculator - pure part of the recalculation.

Streak blocks, merging extracted sums with adjustments, and ranking.
Nothing here touches the database, the aggregation service feeds it.
"""

from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from pydantic import BaseModel

from app.models.rating import AdjustmentTotals, PredictionStatus, RatingLevel

# Umbrales de nivel sobre total_points, de mayor a menor
RATING_LEVEL_THRESHOLDS: tuple[tuple[int, RatingLevel], ...] = (
    (1300, RatingLevel.MYTHIC),
    (950, RatingLevel.DIAMOND),
    (650, RatingLevel.PLATINUM),
    (350, RatingLevel.GOLD),
    (150, RatingLevel.SILVER),
)


class StreakResult(BaseModel):
    current_streak: int = 0
    max_streak: int = 0


class UserActivity(BaseModel):
    """Lo que el extractor devuelve para un usuario"""

    total_sum: int = 0
    current_sum: int = 0
    yearly_sum: int = 0
    last_prediction_at: Optional[datetime] = None
    last_resolved_at: Optional[datetime] = None
    resolved_count: int = 0
    win_count: int = 0
    streak: StreakResult = StreakResult()


class AggregatedUserRating(BaseModel):
    user_id: str
    total_points: int
    seasonal_points: int
    yearly_points: int
    level: RatingLevel = RatingLevel.BRONZE
    mythic_rank: Optional[int] = None
    current_streak: int = 0
    max_streak: int = 0
    last_prediction_at: Optional[datetime] = None
    last_resolved_at: Optional[datetime] = None
    prediction_count: int = 0
    prediction_wins: int = 0


def resolve_rating_level(total_points: int) -> RatingLevel:
    for threshold, level in RATING_LEVEL_THRESHOLDS:
        if total_points >= threshold:
            return level
    return RatingLevel.BRONZE


def compute_streak(statuses: Sequence[str]) -> StreakResult:
    """
    Win streaks over one user's resolved entries, oldest first.

    Each entry's block key is the running count of non-wins up to and
    including it, so a new block starts at every non-win and the wins of a
    block are one consecutive run. The longest run is the max streak; the
    last entry's block counts as the current streak only if that entry won.
    """
    if not statuses:
        return StreakResult()

    block = 0
    wins_per_block: dict[int, int] = {}
    for status in statuses:
        if status != PredictionStatus.WON.value:
            block += 1
        else:
            wins_per_block[block] = wins_per_block.get(block, 0) + 1

    max_streak = max(wins_per_block.values(), default=0)
    if statuses[-1] == PredictionStatus.WON.value:
        current_streak = wins_per_block[block]
    else:
        current_streak = 0

    return StreakResult(current_streak=current_streak, max_streak=max_streak)


def merge_user_ratings(
    activity: Mapping[str, UserActivity],
    adjustments: Mapping[str, AdjustmentTotals],
    requested_user_ids: Optional[Iterable[str]] = None,
) -> list[AggregatedUserRating]:
    """
    Fold adjustments on top of the extracted sums.

    seasonal = current window sum + global + current adjustments
    yearly   = yearly window sum + global + yearly adjustments
    total    = all-time sum + global adjustments
    """
    user_ids = set(activity) | set(adjustments)
    if requested_user_ids:
        user_ids.update(requested_user_ids)

    entries = []
    for user_id in user_ids:
        stats = activity.get(user_id) or UserActivity()
        adj = adjustments.get(user_id) or AdjustmentTotals()

        entries.append(AggregatedUserRating(
            user_id=user_id,
            total_points=stats.total_sum + adj.global_delta,
            seasonal_points=stats.current_sum + adj.global_delta + adj.current_delta,
            yearly_points=stats.yearly_sum + adj.global_delta + adj.yearly_delta,
            current_streak=stats.streak.current_streak,
            max_streak=max(stats.streak.max_streak, stats.streak.current_streak),
            last_prediction_at=stats.last_prediction_at,
            last_resolved_at=stats.last_resolved_at,
            prediction_count=stats.resolved_count,
            prediction_wins=stats.win_count,
        ))

    return entries


def _sort_key(entry: AggregatedUserRating):
    return (-entry.total_points, -entry.seasonal_points, -entry.yearly_points, entry.user_id)


def rank_entries(entries: Iterable[AggregatedUserRating]) -> list[AggregatedUserRating]:
    """
    Sort by (total desc, seasonal desc, yearly desc, user_id asc), set levels,
    and hand out dense mythic ranks in that order.
    """
    ranked = sorted(entries, key=_sort_key)

    mythic_rank = 1
    for entry in ranked:
        entry.level = resolve_rating_level(entry.total_points)
        if entry.level is RatingLevel.MYTHIC:
            entry.mythic_rank = mythic_rank
            mythic_rank += 1
        else:
            entry.mythic_rank = None

    return ranked


def top_for_scope(
    ranked: Sequence[AggregatedUserRating],
    field: str,
    limit: int,
) -> list[AggregatedUserRating]:
    """Top `limit` by one points column; ties keep the ranked order (sorted is stable)"""
    return sorted(ranked, key=lambda e: getattr(e, field), reverse=True)[:limit]
