from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime, timezone
from pymongo import ReturnDocument
from app.models.user import User

class UserRepository:
    """User database operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["users"]

    async def create_user(self, user: User) -> User:
        """Create a new user."""
        await self.collection.insert_one(user.to_document())
        return user

    async def get_user_by_id(self, user_id: str) -> User | None:
        """Get user by ID."""
        user = await self.collection.find_one({"_id": user_id, "is_deleted": False})
        if user:
            return User(**user)
        return None

    async def get_user_by_telegram_id(self, telegram_user_id: str) -> User | None:
        """Get user by Telegram user id."""
        user = await self.collection.find_one({
            "telegram_user_id": telegram_user_id,
            "is_deleted": False
        })
        if user:
            return User(**user)
        return None

    async def get_receiving_address(self, user_id: str) -> str | None:
        """The wallet a bill creator receives payments on, if configured."""
        user = await self.get_user_by_id(user_id)
        if user is None:
            return None
        return user.ton_wallet_address or None

    async def update_wallet(self, user_id: str, address: str | None) -> User | None:
        """Set or clear the user's receiving wallet."""
        result = await self.collection.find_one_and_update(
            {"_id": user_id, "is_deleted": False},
            {"$set": {
                "ton_wallet_address": address,
                "updated_at": datetime.now(timezone.utc)
            }},
            return_document=ReturnDocument.AFTER
        )
        if result:
            return User(**result)
        return None
