"""
📬 RewardJobQueue - cola durable de rewards sobre la colección reward_jobs

Estados: PENDING -> PROCESSING -> DONE | PENDING (reintento o release) | FAILED
Un PROCESSING con el claim vencido se puede volver a tomar.

El claim es un find_one_and_update atómico por documento: dos workers nunca
toman el mismo job y ninguno espera al otro (el equivalente a SKIP LOCKED).
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from app.models.reward import RewardJob, RewardJobStats, RewardJobStatus


def _job_from_doc(doc: dict) -> RewardJob:
    doc = dict(doc)
    doc["_id"] = str(doc["_id"])
    return RewardJob(**doc)


class RewardJobQueue:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["reward_jobs"]

    async def enqueue(self, payload: dict) -> RewardJob:
        now = datetime.now(timezone.utc)
        doc = {
            "payload": payload,
            "status": RewardJobStatus.PENDING.value,
            "attempts": 0,
            "error": None,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _job_from_doc(doc)

    async def claim(self, batch_size: int, stale_after_seconds: Optional[float] = None) -> list[RewardJob]:
        """
        🔥 Toma hasta batch_size jobs PENDING (los más viejos primero)

        Cada uno pasa a PROCESSING en la misma operación que lo selecciona.
        Con stale_after_seconds también se retoman los PROCESSING cuyo claim
        es más viejo que eso (el worker murió a mitad del batch).
        """
        jobs = []
        for _ in range(max(0, batch_size)):
            now = datetime.now(timezone.utc)
            query = {"status": RewardJobStatus.PENDING.value}
            if stale_after_seconds is not None:
                query = {"$or": [
                    query,
                    {
                        "status": RewardJobStatus.PROCESSING.value,
                        "claimed_at": {"$lt": now - timedelta(seconds=stale_after_seconds)},
                    },
                ]}

            doc = await self.collection.find_one_and_update(
                query,
                {"$set": {
                    "status": RewardJobStatus.PROCESSING.value,
                    "claimed_at": now,
                    "updated_at": now,
                }},
                sort=[("created_at", ASCENDING), ("_id", ASCENDING)],
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                break
            jobs.append(_job_from_doc(doc))
        return jobs

    async def release(self, job_ids: list[str]) -> int:
        """Devuelve a PENDING jobs tomados que no se llegaron a cerrar, sin contar intento"""
        if not job_ids:
            return 0
        result = await self.collection.update_many(
            {
                "_id": {"$in": [ObjectId(job_id) for job_id in job_ids]},
                "status": RewardJobStatus.PROCESSING.value,
            },
            {"$set": {
                "status": RewardJobStatus.PENDING.value,
                "updated_at": datetime.now(timezone.utc),
            }},
        )
        return result.modified_count

    async def complete(self, job_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": ObjectId(job_id), "status": RewardJobStatus.PROCESSING.value},
            {"$set": {
                "status": RewardJobStatus.DONE.value,
                "updated_at": datetime.now(timezone.utc),
            }},
        )
        return result.modified_count > 0

    async def fail(self, job_id: str, error: str, max_attempts: int) -> Optional[RewardJob]:
        """
        Suma un intento y guarda el error

        Vuelve a PENDING mientras attempts < max_attempts, si no queda FAILED.
        """
        doc = await self.collection.find_one_and_update(
            {"_id": ObjectId(job_id), "status": RewardJobStatus.PROCESSING.value},
            [
                {"$set": {
                    "attempts": {"$add": [{"$ifNull": ["$attempts", 0]}, 1]},
                    "error": {"$literal": error},
                    "updated_at": datetime.now(timezone.utc),
                }},
                {"$set": {
                    "status": {
                        "$cond": [
                            {"$gte": ["$attempts", max_attempts]},
                            RewardJobStatus.FAILED.value,
                            RewardJobStatus.PENDING.value,
                        ]
                    }
                }},
            ],
            return_document=ReturnDocument.AFTER,
        )
        return _job_from_doc(doc) if doc else None

    async def get(self, job_id: str) -> Optional[RewardJob]:
        doc = await self.collection.find_one({"_id": ObjectId(job_id)})
        return _job_from_doc(doc) if doc else None

    async def stats(self) -> RewardJobStats:
        pipeline = [{"$group": {"_id": "$status", "count": {"$sum": 1}}}]
        rows = await self.collection.aggregate(pipeline).to_list(length=None)

        counts = {row["_id"]: row["count"] for row in rows}
        return RewardJobStats(
            pending=counts.get(RewardJobStatus.PENDING.value, 0),
            processing=counts.get(RewardJobStatus.PROCESSING.value, 0),
            done=counts.get(RewardJobStatus.DONE.value, 0),
            failed=counts.get(RewardJobStatus.FAILED.value, 0),
        )
