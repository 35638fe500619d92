import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import IndexModel
from config import settings

logger = logging.getLogger(__name__)

client: Optional[AsyncIOMotorClient] = None
_db_instance: Optional[AsyncIOMotorDatabase] = None


def get_db() -> AsyncIOMotorDatabase:
    """Dépendance FastAPI : base Motor courante. Surchargée dans les tests."""
    if _db_instance is None:
        raise RuntimeError("Database not connected. Call connect_db() first.")
    return _db_instance


async def connect_db():
    global client, _db_instance
    client = AsyncIOMotorClient(
        settings.MONGO_URL,
        serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS,
        connectTimeoutMS=settings.MONGO_TIMEOUT_MS,
        socketTimeoutMS=settings.MONGO_TIMEOUT_MS,
        tz_aware=True,
    )
    _db_instance = client[settings.DB_NAME]
    logger.info(f"Connected to MongoDB: {settings.DB_NAME}")
    try:
        await create_indexes(_db_instance)
    except Exception as e:
        logger.warning(f"Could not create indexes (non-blocking): {e}")


async def close_db():
    global client, _db_instance
    if client:
        client.close()
        client = None
        _db_instance = None
        logger.info("MongoDB connection closed")


async def create_indexes(database: AsyncIOMotorDatabase):
    collections_to_index = {
        "staffs": [
            IndexModel([("staff_id", 1)], unique=True),
            IndexModel([("uid", 1)], unique=True, sparse=True),
            IndexModel([("phone", 1)], unique=True),
            IndexModel([("role", 1)]),
        ],
        "destinations": [
            IndexModel([("destination_id", 1)], unique=True),
            IndexModel([("name", 1)]),
        ],
        "parcels": [
            IndexModel([("parcel_id", 1)], unique=True),
            IndexModel([("tracking_code", 1)], unique=True),
            IndexModel([("created_by", 1), ("created_at", -1)]),
            IndexModel([("destination_id", 1)]),
            IndexModel([("status", 1)]),
            IndexModel([("ledger_posted", 1)]),
            IndexModel([("created_at", 1)]),
        ],
        "parcel_events": [
            IndexModel([("parcel_id", 1)]),
            IndexModel([("created_at", 1)]),
        ],
        "ledger": [
            IndexModel([("entry_id", 1)], unique=True),
            IndexModel([("staff_id", 1), ("created_at", -1)]),
            # Un seul delivery_fee par colis (sert aussi aux recherches par colis)
            IndexModel(
                [("parcel_id", 1)],
                unique=True,
                partialFilterExpression={"type": "delivery_fee"},
                name="parcel_id_delivery_fee_unique",
            ),
            IndexModel([("type", 1)]),
            IndexModel([("created_at", 1)]),
        ],
        "wallets": [
            IndexModel([("wallet_id", 1)], unique=True),
            IndexModel([("staff_id", 1)], unique=True),
        ],
        "sms_logs": [
            IndexModel([("parcel_id", 1)]),
            IndexModel([("sent_at", 1)]),
        ],
    }

    for collection_name, index_models in collections_to_index.items():
        try:
            await database[collection_name].create_indexes(index_models)
            logger.info(f"Indexes created for collection: {collection_name}")
        except Exception as e:
            logger.error(f"Failed to create indexes for collection {collection_name}: {e}")

    logger.info("All MongoDB indexes creation attempts completed.")
