"""
AchievementRewardRepository - registro de rewards ya aplicados

El índice único (user_id, group, tier, scope_year) es la garantía final
de que un reward no se aplica dos veces.
"""

from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase

from app.models.reward import AchievementReward


class AchievementRewardRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["achievement_rewards"]

    async def exists(
        self,
        user_id: str,
        group: str,
        tier: int,
        scope_year: Optional[int],
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> bool:
        count = await self.collection.count_documents(
            {"user_id": user_id, "group": group, "tier": tier, "scope_year": scope_year},
            limit=1,
            session=session,
        )
        return count > 0

    async def create(
        self,
        reward: AchievementReward,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> AchievementReward:
        """Lanza DuplicateKeyError si el reward ya existe"""
        await self.collection.insert_one(reward.model_dump(), session=session)
        return reward

    async def list_for_user(self, user_id: str) -> list[AchievementReward]:
        docs = await self.collection.find({"user_id": user_id}).sort("created_at", 1).to_list(length=None)
        return [AchievementReward(**doc) for doc in docs]

    async def delete(
        self,
        user_id: str,
        group: str,
        tier: int,
        scope_year: Optional[int],
    ) -> bool:
        result = await self.collection.delete_one(
            {"user_id": user_id, "group": group, "tier": tier, "scope_year": scope_year}
        )
        return result.deleted_count > 0
