"""
Dependencies de FastAPI para inyeccion de BD, cache y servicios
"""

from typing import Annotated

from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.cache import CacheBackend, get_cache
from app.core.config import Settings, get_settings
from app.database import get_database
from app.services.leaderboard_service import LeaderboardService
from app.services.reward_job_processor import RewardJobProcessor


async def get_cache_backend() -> CacheBackend:
    return get_cache()


def get_leaderboard_service(
    db: Annotated[AsyncIOMotorDatabase, Depends(get_database)],
    cache: Annotated[CacheBackend, Depends(get_cache_backend)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> LeaderboardService:
    return LeaderboardService(db, settings, cache)


def get_reward_processor(
    db: Annotated[AsyncIOMotorDatabase, Depends(get_database)],
    cache: Annotated[CacheBackend, Depends(get_cache_backend)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> RewardJobProcessor:
    return RewardJobProcessor(db, cache, settings)


# Alias de tipos para que se vea mas limpio en los endpoints
Database = Annotated[AsyncIOMotorDatabase, Depends(get_database)]
Cache = Annotated[CacheBackend, Depends(get_cache_backend)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Leaderboards = Annotated[LeaderboardService, Depends(get_leaderboard_service)]
RewardProcessor = Annotated[RewardJobProcessor, Depends(get_reward_processor)]
