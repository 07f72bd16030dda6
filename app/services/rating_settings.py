"""
Rating windows - resolves the current/yearly window boundaries.

Scope lengths come from the admin settings (clamped), and an open season
for a scope overrides the rolling window for that scope.
"""

import logging
from datetime import datetime, timedelta
from typing import Mapping, Optional

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase

from app.models.rating import RatingScope, RatingSeason, RatingSettings, RatingWindows

DEFAULT_CURRENT_SCOPE_DAYS = 90
DEFAULT_YEARLY_SCOPE_DAYS = 365
MIN_CURRENT_SCOPE_DAYS = 7
MAX_CURRENT_SCOPE_DAYS = 365
MIN_YEARLY_SCOPE_DAYS = 90
MAX_YEARLY_SCOPE_DAYS = 1460

logger = logging.getLogger(__name__)


def _as_days(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Invalid scope length %r, using %d days", value, default)
        return default


def normalize_settings(current_scope_days, yearly_scope_days) -> tuple[int, int]:
    """
    Clamp both scope lengths to their admin bounds.

    The yearly window must always contain the current one, so its lower
    bound is raised to the current length.
    Values that aren't numbers fall back to the defaults.
    """
    current = _as_days(current_scope_days, DEFAULT_CURRENT_SCOPE_DAYS)
    current = max(MIN_CURRENT_SCOPE_DAYS, min(MAX_CURRENT_SCOPE_DAYS, current))
    yearly = _as_days(yearly_scope_days, DEFAULT_YEARLY_SCOPE_DAYS)
    yearly = max(max(current, MIN_YEARLY_SCOPE_DAYS), min(MAX_YEARLY_SCOPE_DAYS, yearly))
    return current, yearly


def _season_start(season: Optional[RatingSeason], anchor: datetime, fallback: datetime) -> datetime:
    if season is None or season.starts_at is None:
        return fallback
    return season.starts_at if season.starts_at <= anchor else fallback


def _season_end(season: Optional[RatingSeason], anchor: datetime) -> datetime:
    if season is None or season.ends_at is None:
        return anchor
    return season.ends_at if season.ends_at >= anchor else anchor


def resolve_windows(
    anchor: datetime,
    settings: RatingSettings,
    seasons: Mapping[RatingScope, RatingSeason],
) -> RatingWindows:
    fallback_current_start = anchor - timedelta(days=settings.current_scope_days)
    yearly_days = max(settings.current_scope_days, settings.yearly_scope_days)
    fallback_yearly_start = anchor - timedelta(days=yearly_days)

    current_season = seasons.get(RatingScope.CURRENT)
    yearly_season = seasons.get(RatingScope.YEARLY)

    return RatingWindows(
        anchor=anchor,
        current_window_start=_season_start(current_season, anchor, fallback_current_start),
        current_window_end=_season_end(current_season, anchor),
        yearly_window_start=_season_start(yearly_season, anchor, fallback_yearly_start),
        yearly_window_end=_season_end(yearly_season, anchor),
    )


async def compute_windows(
    db: AsyncIOMotorDatabase,
    anchor: datetime,
    session: Optional[AsyncIOMotorClientSession] = None,
) -> RatingWindows:
    """Lee settings y temporadas abiertas y resuelve las ventanas en `anchor`"""
    # Import local: el repositorio importa las constantes de este módulo
    from app.repositories.settings_repository import RatingSettingsRepository, SeasonRepository

    settings = await RatingSettingsRepository(db).get(session=session)
    seasons = await SeasonRepository(db).get_active_map(session=session)
    return resolve_windows(anchor, settings, seasons)
