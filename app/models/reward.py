from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class RewardJobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    FAILED = "FAILED"


class RewardJobPayload(BaseModel):
    """Lo que el subsistema de logros encola para un nivel desbloqueado"""

    type: str = "achievement_reward"
    user_id: str
    group: str  # streak | predictions | season_points
    tier: int
    points: int
    scope_year: Optional[int] = None  # None = recompensa global


class RewardJob(BaseModel):
    id: str = Field(..., alias="_id")
    payload: dict  # se valida como RewardJobPayload al procesar
    status: RewardJobStatus = RewardJobStatus.PENDING
    attempts: int = 0
    error: Optional[str] = None

    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class AchievementReward(BaseModel):
    """Registro de idempotencia: un solo reward por (user, group, tier, year)"""

    user_id: str
    group: str
    tier: int
    scope_year: Optional[int] = None
    points: int
    created_at: datetime


class RewardJobStats(BaseModel):
    pending: int = 0
    processing: int = 0
    done: int = 0
    failed: int = 0
