"""
🏆 RatingRepository - resúmenes, rachas y snapshots de rating

rating_summaries y prediction_streaks tienen _id = user_id y se
sobreescriben en cada recálculo. rating_snapshots es append-only.
"""

from datetime import datetime
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, UpdateOne

from app.models.rating import LeaderboardSnapshot, RatingLevel, RatingScope, StreakState, UserRatingSummary
from app.services.rating_calculator import AggregatedUserRating

SCOPE_POINTS_FIELD = {
    RatingScope.CURRENT: "seasonal_points",
    RatingScope.YEARLY: "yearly_points",
}


def _chunks(items: list, size: int):
    for index in range(0, len(items), size):
        yield items[index:index + size]


class RatingRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.summaries = db["rating_summaries"]
        self.streaks = db["prediction_streaks"]
        self.snapshots = db["rating_snapshots"]

    # ============================================
    # 📌 WRITE
    # ============================================

    async def _bulk_in_waves(
        self,
        collection,
        operations: list[UpdateOne],
        chunk_size: int,
        session: Optional[AsyncIOMotorClientSession],
    ) -> int:
        """Una wave = un bulk_write de hasta chunk_size upserts; las waves van en serie"""
        written = 0
        for wave in _chunks(operations, max(1, chunk_size)):
            result = await collection.bulk_write(wave, ordered=False, session=session)
            written += result.upserted_count + result.matched_count
        return written

    async def upsert_ratings(
        self,
        entries: list[AggregatedUserRating],
        captured_at: datetime,
        chunk_size: int = 100,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> None:
        """Un summary y un streak por usuario"""
        summary_ops = []
        streak_ops = []

        for entry in entries:
            summary_ops.append(UpdateOne(
                {"_id": entry.user_id},
                {"$set": {
                    "total_points": entry.total_points,
                    "seasonal_points": entry.seasonal_points,
                    "yearly_points": entry.yearly_points,
                    "level": entry.level.value,
                    "mythic_rank": entry.mythic_rank,
                    "prediction_count": entry.prediction_count,
                    "prediction_wins": entry.prediction_wins,
                    "last_recalculated_at": captured_at,
                }},
                upsert=True,
            ))
            streak_ops.append(UpdateOne(
                {"_id": entry.user_id},
                {"$set": {
                    "current_streak": entry.current_streak,
                    "max_streak": entry.max_streak,
                    "last_prediction_at": entry.last_prediction_at,
                    "last_resolved_at": entry.last_resolved_at,
                }},
                upsert=True,
            ))

        await self._bulk_in_waves(self.summaries, summary_ops, chunk_size, session)
        await self._bulk_in_waves(self.streaks, streak_ops, chunk_size, session)

    async def reassign_mythic_ranks(
        self,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> dict[str, int]:
        """
        Ranks densos 1..k sobre todos los resúmenes MYTHIC guardados

        Mismo orden que el recálculo completo: total, seasonal, yearly desc y
        _id asc. Quien no es MYTHIC queda sin rank.
        """
        cursor = self.summaries.find(
            {"level": RatingLevel.MYTHIC.value},
            {"_id": 1, "mythic_rank": 1},
            session=session,
        ).sort([
            ("total_points", DESCENDING),
            ("seasonal_points", DESCENDING),
            ("yearly_points", DESCENDING),
            ("_id", ASCENDING),
        ])
        docs = await cursor.to_list(length=None)

        ranks = {}
        operations = []
        for rank, doc in enumerate(docs, start=1):
            ranks[doc["_id"]] = rank
            if doc.get("mythic_rank") != rank:
                operations.append(UpdateOne({"_id": doc["_id"]}, {"$set": {"mythic_rank": rank}}))

        if operations:
            await self.summaries.bulk_write(operations, ordered=False, session=session)
        await self.summaries.update_many(
            {"level": {"$ne": RatingLevel.MYTHIC.value}, "mythic_rank": {"$ne": None}},
            {"$set": {"mythic_rank": None}},
            session=session,
        )
        return ranks

    async def append_snapshots(
        self,
        snapshots: list[LeaderboardSnapshot],
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> int:
        if not snapshots:
            return 0

        docs = []
        for snapshot in snapshots:
            doc = snapshot.model_dump()
            doc["scope"] = snapshot.scope.value
            docs.append(doc)

        result = await self.snapshots.insert_many(docs, session=session)
        return len(result.inserted_ids)

    # ============================================
    # 📌 READ
    # ============================================

    async def get_summary(self, user_id: str) -> Optional[UserRatingSummary]:
        doc = await self.summaries.find_one({"_id": user_id})
        return UserRatingSummary(**doc) if doc else None

    async def get_streak(self, user_id: str) -> Optional[StreakState]:
        doc = await self.streaks.find_one({"_id": user_id})
        return StreakState(**doc) if doc else None

    async def get_streaks(self, user_ids: list[str]) -> dict[str, StreakState]:
        if not user_ids:
            return {}
        docs = await self.streaks.find({"_id": {"$in": user_ids}}).to_list(length=None)
        return {doc["_id"]: StreakState(**doc) for doc in docs}

    async def count_summaries(self) -> int:
        return await self.summaries.count_documents({})

    async def get_page(
        self,
        scope: RatingScope,
        skip: int,
        limit: int,
    ) -> list[UserRatingSummary]:
        """
        Página ordenada por los puntos del scope

        Desempate: total_points desc y luego _id asc para que las páginas
        sean estables entre sí.
        """
        cursor = self.summaries.find().sort([
            (SCOPE_POINTS_FIELD[scope], DESCENDING),
            ("total_points", DESCENDING),
            ("_id", ASCENDING),
        ]).skip(skip).limit(limit)

        docs = await cursor.to_list(length=limit)
        return [UserRatingSummary(**doc) for doc in docs]

    async def get_snapshots(
        self,
        scope: RatingScope,
        captured_at: Optional[datetime] = None,
    ) -> list[LeaderboardSnapshot]:
        """Snapshot más reciente del scope (o el de captured_at), por rank"""
        if captured_at is None:
            latest = await self.snapshots.find_one({"scope": scope.value}, sort=[("captured_at", DESCENDING)])
            if not latest:
                return []
            captured_at = latest["captured_at"]

        cursor = self.snapshots.find({"scope": scope.value, "captured_at": captured_at}).sort("rank", ASCENDING)
        docs = await cursor.to_list(length=None)
        return [LeaderboardSnapshot(**doc) for doc in docs]
