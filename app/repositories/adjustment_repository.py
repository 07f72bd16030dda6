"""
PointAdjustmentRepository - ajustes de puntos (admin y rewards)

Los ajustes son inmutables; solo se suman al recalcular.
"""

from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase

from app.models.rating import AdjustmentTotals, PointAdjustment, RatingScope


class PointAdjustmentRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["point_adjustments"]

    async def create(
        self,
        adjustment: PointAdjustment,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> PointAdjustment:
        if adjustment.created_at is None:
            adjustment.created_at = datetime.now(timezone.utc)

        doc = adjustment.model_dump(mode="python")
        doc["scope"] = adjustment.scope.value if adjustment.scope else None

        await self.collection.insert_one(doc, session=session)
        return adjustment

    async def list_for_user(self, user_id: str) -> list[PointAdjustment]:
        cursor = self.collection.find({"user_id": user_id}).sort("created_at", 1)
        docs = await cursor.to_list(length=None)
        return [PointAdjustment(**doc) for doc in docs]

    async def sum_by_user(
        self,
        user_ids: Optional[list[str]] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> dict[str, AdjustmentTotals]:
        """
        🔥 Suma de deltas por usuario en tres buckets: global, CURRENT, YEARLY
        """
        def bucket(scope_value):
            return {"$sum": {"$cond": [{"$eq": [{"$ifNull": ["$scope", None]}, scope_value]}, "$delta", 0]}}

        pipeline = []
        if user_ids:
            pipeline.append({"$match": {"user_id": {"$in": list(user_ids)}}})
        pipeline.append({
            "$group": {
                "_id": "$user_id",
                "global_delta": bucket(None),
                "current_delta": bucket(RatingScope.CURRENT.value),
                "yearly_delta": bucket(RatingScope.YEARLY.value),
            }
        })

        cursor = self.collection.aggregate(pipeline, session=session)
        rows = await cursor.to_list(length=None)

        return {
            row["_id"]: AdjustmentTotals(
                global_delta=int(row["global_delta"]),
                current_delta=int(row["current_delta"]),
                yearly_delta=int(row["yearly_delta"]),
            )
            for row in rows
        }
