"""
⚙️ Rating settings & seasons - acceso a MongoDB

Settings es un documento singleton (_id = 1). Las temporadas son overrides
opcionales de la ventana de cada scope.
"""

from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument

from app.models.rating import RatingScope, RatingSeason, RatingSettings, SeasonWinner
from app.services.rating_settings import (
    DEFAULT_CURRENT_SCOPE_DAYS,
    DEFAULT_YEARLY_SCOPE_DAYS,
    normalize_settings,
)

SETTINGS_SINGLETON_ID = 1
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _season_from_doc(doc: dict) -> RatingSeason:
    doc = dict(doc)
    doc["_id"] = str(doc["_id"])
    return RatingSeason(**doc)


class RatingSettingsRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["rating_settings"]

    async def get(self, session: Optional[AsyncIOMotorClientSession] = None) -> RatingSettings:
        """Settings normalizados; sin documento se usan los defaults"""
        doc = await self.collection.find_one({"_id": SETTINGS_SINGLETON_ID}, session=session)

        if not doc:
            return RatingSettings(
                current_scope_days=DEFAULT_CURRENT_SCOPE_DAYS,
                yearly_scope_days=DEFAULT_YEARLY_SCOPE_DAYS,
                updated_at=EPOCH,
            )

        current, yearly = normalize_settings(
            doc.get("current_scope_days", DEFAULT_CURRENT_SCOPE_DAYS),
            doc.get("yearly_scope_days", DEFAULT_YEARLY_SCOPE_DAYS),
        )
        return RatingSettings(
            current_scope_days=current,
            yearly_scope_days=yearly,
            updated_at=doc.get("updated_at") or EPOCH,
        )

    async def save(self, current_scope_days: int, yearly_scope_days: int) -> RatingSettings:
        current, yearly = normalize_settings(current_scope_days, yearly_scope_days)
        now = datetime.now(timezone.utc)

        doc = await self.collection.find_one_and_update(
            {"_id": SETTINGS_SINGLETON_ID},
            {"$set": {
                "current_scope_days": current,
                "yearly_scope_days": yearly,
                "updated_at": now,
            }},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return RatingSettings(
            current_scope_days=doc["current_scope_days"],
            yearly_scope_days=doc["yearly_scope_days"],
            updated_at=doc["updated_at"],
        )


class SeasonRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["rating_seasons"]

    async def get_active_map(
        self,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> dict[RatingScope, RatingSeason]:
        """Temporada abierta más reciente por scope"""
        cursor = self.collection.find({"closed_at": None}, session=session).sort("starts_at", DESCENDING)
        docs = await cursor.to_list(length=None)

        seasons: dict[RatingScope, RatingSeason] = {}
        for doc in docs:
            season = _season_from_doc(doc)
            seasons.setdefault(season.scope, season)
        return seasons

    async def get_active(self, scope: RatingScope) -> Optional[RatingSeason]:
        seasons = await self.get_active_map()
        return seasons.get(scope)

    async def create(self, season: RatingSeason) -> RatingSeason:
        doc = season.model_dump(exclude={"id"})
        doc["scope"] = season.scope.value
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _season_from_doc(doc)

    async def close(
        self,
        season_id: str,
        ended_at: datetime,
        winners: list[SeasonWinner],
    ) -> Optional[RatingSeason]:
        doc = await self.collection.find_one_and_update(
            {"_id": ObjectId(season_id), "closed_at": None},
            {"$set": {
                "closed_at": ended_at,
                "ends_at": ended_at,
                "winners": [w.model_dump() for w in winners],
            }},
            return_document=ReturnDocument.AFTER,
        )
        return _season_from_doc(doc) if doc else None

    async def list_recent(self, limit: int = 12) -> list[RatingSeason]:
        cursor = self.collection.find().sort("starts_at", DESCENDING).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [_season_from_doc(doc) for doc in docs]
