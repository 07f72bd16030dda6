"""
🎯 PredictionEntryRepository - agregaciones sobre predicciones resueltas

Las predicciones las escribe el servicio de settlement; aquí solo se leen.
Cada pasada acepta un set de user_ids opcional para recálculos parciales.
"""

from datetime import datetime
from typing import Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase

from app.models.rating import PredictionStatus, RatingWindows
from app.services.rating_calculator import UserActivity, compute_streak


def _user_filter(user_ids: Optional[Iterable[str]]) -> dict:
    if not user_ids:
        return {}
    return {"user_id": {"$in": list(user_ids)}}


def _scored_filter(user_ids: Optional[Iterable[str]]) -> dict:
    """Estado terminal y score no nulo"""
    return {
        "status": {"$ne": PredictionStatus.PENDING.value},
        "score_awarded": {"$ne": None},
        **_user_filter(user_ids),
    }


class PredictionEntryRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["prediction_entries"]

    async def _aggregate(self, pipeline: list[dict], session: Optional[AsyncIOMotorClientSession]) -> list[dict]:
        cursor = self.collection.aggregate(pipeline, session=session)
        return await cursor.to_list(length=None)

    # ============================================
    # 📌 SUMS
    # ============================================

    async def sum_scores(
        self,
        user_ids: Optional[list[str]] = None,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> dict[str, int]:
        """
        🔥 Suma de score_awarded por usuario

        Sin ventana es la suma all-time; con ventana filtra por resolved_at.
        """
        match = _scored_filter(user_ids)
        if window_start is not None or window_end is not None:
            resolved: dict = {"$ne": None}
            if window_start is not None:
                resolved["$gte"] = window_start
            if window_end is not None:
                resolved["$lte"] = window_end
            match["resolved_at"] = resolved

        pipeline = [
            {"$match": match},
            {"$group": {"_id": "$user_id", "points": {"$sum": "$score_awarded"}}},
        ]
        rows = await self._aggregate(pipeline, session)
        return {row["_id"]: int(row["points"]) for row in rows}

    # ============================================
    # 📌 ACTIVITY STATS
    # ============================================

    async def get_activity_stats(
        self,
        user_ids: Optional[list[str]] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> dict[str, dict]:
        """
        Última predicción enviada / resuelta y conteos por usuario

        Retorna: {"user1": {"last_submitted_at": ..., "last_resolved_at": ...,
                            "resolved_count": 12, "win_count": 7}}
        """
        is_resolved = {"$ne": ["$status", PredictionStatus.PENDING.value]}
        pipeline = [
            {"$match": _user_filter(user_ids)},
            {
                "$group": {
                    "_id": "$user_id",
                    "last_submitted_at": {"$max": "$submitted_at"},
                    # $max ignora nulls, las pendientes no cuentan
                    "last_resolved_at": {"$max": {"$cond": [is_resolved, "$resolved_at", None]}},
                    "resolved_count": {"$sum": {"$cond": [is_resolved, 1, 0]}},
                    "win_count": {
                        "$sum": {"$cond": [{"$eq": ["$status", PredictionStatus.WON.value]}, 1, 0]}
                    },
                }
            },
        ]
        rows = await self._aggregate(pipeline, session)
        return {row.pop("_id"): row for row in rows}

    # ============================================
    # 📌 STREAKS
    # ============================================

    async def get_resolved_sequences(
        self,
        user_ids: Optional[list[str]] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> dict[str, list[str]]:
        """
        Estados de las predicciones resueltas de cada usuario en orden temporal

        Empates de resolved_at se desempatan por _id para que el orden sea estable.
        """
        pipeline = [
            {
                "$match": {
                    "status": {"$ne": PredictionStatus.PENDING.value},
                    "resolved_at": {"$ne": None},
                    **_user_filter(user_ids),
                }
            },
            {"$sort": {"user_id": 1, "resolved_at": 1, "_id": 1}},
            {"$group": {"_id": "$user_id", "statuses": {"$push": "$status"}}},
        ]
        rows = await self._aggregate(pipeline, session)
        return {row["_id"]: row["statuses"] for row in rows}

    # ============================================
    # 📌 EXTRACT (todas las pasadas)
    # ============================================

    async def extract(
        self,
        windows: RatingWindows,
        user_ids: Optional[list[str]] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> dict[str, UserActivity]:
        """Corre todas las pasadas y las junta en un UserActivity por usuario"""
        totals = await self.sum_scores(user_ids, session=session)
        current = await self.sum_scores(
            user_ids, windows.current_window_start, windows.current_window_end, session=session
        )
        yearly = await self.sum_scores(
            user_ids, windows.yearly_window_start, windows.yearly_window_end, session=session
        )
        stats = await self.get_activity_stats(user_ids, session=session)
        sequences = await self.get_resolved_sequences(user_ids, session=session)

        activity: dict[str, UserActivity] = {}
        for user_id in set(totals) | set(current) | set(yearly) | set(stats) | set(sequences):
            user_stats = stats.get(user_id, {})
            activity[user_id] = UserActivity(
                total_sum=totals.get(user_id, 0),
                current_sum=current.get(user_id, 0),
                yearly_sum=yearly.get(user_id, 0),
                last_prediction_at=user_stats.get("last_submitted_at"),
                last_resolved_at=user_stats.get("last_resolved_at"),
                resolved_count=user_stats.get("resolved_count", 0),
                win_count=user_stats.get("win_count", 0),
                streak=compute_streak(sequences.get(user_id, [])),
            )
        return activity
