from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class RatingScope(str, Enum):
    CURRENT = "CURRENT"
    YEARLY = "YEARLY"

    @property
    def key(self) -> str:
        """Lowercase form used in cache keys and API payloads"""
        return "yearly" if self is RatingScope.YEARLY else "current"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "RatingScope":
        """Anything other than "yearly" falls back to the current scope"""
        if raw and raw.upper() == cls.YEARLY.value:
            return cls.YEARLY
        return cls.CURRENT


class RatingLevel(str, Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"
    DIAMOND = "DIAMOND"
    MYTHIC = "MYTHIC"


class PredictionStatus(str, Enum):
    PENDING = "PENDING"
    WON = "WON"
    LOST = "LOST"
    VOID = "VOID"


class UserRatingSummary(BaseModel):
    """Per-user aggregate, overwritten on every recalculation"""

    user_id: str = Field(..., alias="_id")

    total_points: int = 0
    seasonal_points: int = 0
    yearly_points: int = 0

    level: RatingLevel = RatingLevel.BRONZE
    mythic_rank: Optional[int] = None

    prediction_count: int = 0
    prediction_wins: int = 0

    last_recalculated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class StreakState(BaseModel):
    user_id: str = Field(..., alias="_id")

    current_streak: int = 0
    max_streak: int = 0

    last_prediction_at: Optional[datetime] = None
    last_resolved_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class LeaderboardSnapshot(BaseModel):
    """Historical leaderboard row, append-only"""

    user_id: str
    scope: RatingScope
    rank: int
    points: int
    captured_at: datetime
    payload: dict = {}  # total/seasonal/yearly points + level at capture time


class PointAdjustment(BaseModel):
    """Manual or system point delta, summed at recalculation time"""

    user_id: str
    delta: int
    scope: Optional[RatingScope] = None  # None = global
    reason: str
    issued_by: str = "admin"
    created_at: Optional[datetime] = None


class AdjustmentTotals(BaseModel):
    global_delta: int = 0
    current_delta: int = 0
    yearly_delta: int = 0


class RatingSettings(BaseModel):
    current_scope_days: int
    yearly_scope_days: int
    updated_at: datetime


class SeasonWinner(BaseModel):
    user_id: str
    rank: int
    scope_points: int
    total_points: int
    prediction_count: int = 0
    prediction_wins: int = 0


class RatingSeason(BaseModel):
    """Admin season override for one scope"""

    id: Optional[str] = Field(None, alias="_id")
    scope: RatingScope
    starts_at: datetime
    ends_at: Optional[datetime] = None
    duration_days: int
    closed_at: Optional[datetime] = None
    winners: list[SeasonWinner] = []

    class Config:
        populate_by_name = True


class RatingWindows(BaseModel):
    anchor: datetime
    current_window_start: datetime
    current_window_end: datetime
    yearly_window_start: datetime
    yearly_window_end: datetime
