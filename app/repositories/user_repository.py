"""
UserRepository - MongoDB access for users collection.

Users are owned by the auth side; ratings only read display data.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.user import UserProfile

PROFILE_PROJECTION = {"name": 1, "username": 1, "profile_picture": 1}


class UserRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["users"]

    async def get_many(self, user_ids: list[str]) -> dict[str, UserProfile]:
        """Get several users at once, keyed by ID. Missing users are left out."""
        if not user_ids:
            return {}
        cursor = self.collection.find({"_id": {"$in": user_ids}}, PROFILE_PROJECTION)
        docs = await cursor.to_list(length=None)
        return {doc["_id"]: UserProfile(**doc) for doc in docs}
