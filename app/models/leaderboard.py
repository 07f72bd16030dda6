from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from app.models.rating import RatingLevel, RatingScope, RatingWindows


class LeaderboardEntry(BaseModel):
    """Entrada en una tabla de clasificación (resultado agregado)"""

    user_id: str
    position: int
    username: str
    avatar_url: Optional[str] = None

    total_points: int
    seasonal_points: int
    yearly_points: int

    level: RatingLevel
    mythic_rank: Optional[int] = None

    current_streak: int = 0
    max_streak: int = 0
    last_prediction_at: Optional[datetime] = None
    last_resolved_at: Optional[datetime] = None

    prediction_count: int = 0
    prediction_wins: int = 0
    accuracy: float = 0.0


class LeaderboardPage(BaseModel):
    scope: RatingScope
    total: int
    page: int
    page_size: int
    captured_at: datetime
    windows: RatingWindows
    entries: list[LeaderboardEntry]


class UserRatingView(BaseModel):
    """Resumen de rating de un usuario (perfil)"""

    user_id: str
    total_points: int = 0
    seasonal_points: int = 0
    yearly_points: int = 0
    level: RatingLevel = RatingLevel.BRONZE
    mythic_rank: Optional[int] = None

    current_streak: int = 0
    max_streak: int = 0
    last_prediction_at: Optional[datetime] = None
    last_resolved_at: Optional[datetime] = None
    last_recalculated_at: Optional[datetime] = None

    prediction_count: int = 0
    prediction_wins: int = 0
    accuracy: float = 0.0
