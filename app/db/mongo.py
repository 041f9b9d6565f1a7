import logging
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from app.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL, tz_aware=True)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    # Create indexes
    await create_indexes(mongodb.db)
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def disconnect_from_mongo():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    logger.info("Disconnected from MongoDB")

async def create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes."""
    # Users
    await db["users"].create_index("telegram_user_id", unique=True)
    await db["users"].create_index("username")

    # Bills
    await db["bills"].create_index("creator_id")
    await db["bills"].create_index("participants.id")
    await db["bills"].create_index("participants.user_id")
    await db["bills"].create_index("participants.telegram_user_id")

    # Payments: at most one open intent per participant
    await db["payments"].create_index(
        "participant_id",
        unique=True,
        partialFilterExpression={"is_open": True},
        name="one_open_intent_per_participant"
    )
    await db["payments"].create_index([("status", 1), ("provider", 1), ("created_at", -1)])
    await db["payments"].create_index([("external_id", 1), ("provider", 1)])
    await db["payments"].create_index("bill_id")

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db
