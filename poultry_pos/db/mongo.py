import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from poultry_pos.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    await create_indexes()
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def disconnect_from_mongo():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    logger.info("Disconnected from MongoDB")

async def create_indexes():
    """Create database indexes."""
    # Customer lookups used by the uniqueness checks
    await mongodb.db["customers"].create_index("customer_name")
    await mongodb.db["customers"].create_index("phone_digits")
    await mongodb.db["customers"].create_index([("is_active", ASCENDING), ("total_debt", DESCENDING)])

    # Invoice numbers are sequential per day and must never collide
    await mongodb.db["invoices"].create_index("invoice_number", unique=True)
    await mongodb.db["invoices"].create_index([("customer_id", ASCENDING), ("invoice_date", DESCENDING)])

    # Payment indexes
    await mongodb.db["payments"].create_index("customer_id")
    await mongodb.db["payments"].create_index("invoice_id")
    await mongodb.db["payments"].create_index("payment_date")

    await mongodb.db["audit_logs"].create_index("created_at")
