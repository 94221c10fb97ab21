"""
MongoDB connections.

The API and the async job handlers use Motor; the job ledger inside the
Celery harness uses a synchronous PyMongo client.
"""

import logging
from functools import lru_cache
from typing import Any, Dict, Optional

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database as PyMongoDatabase

from eventmedia.core.config import get_settings

logger = logging.getLogger(__name__)


def _client_kwargs(uri: str) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    if "mongodb+srv://" in uri or "ssl=true" in uri.lower() or "tls=true" in uri.lower():
        kwargs["tlsCAFile"] = certifi.where()
    return kwargs


class Database:
    """MongoDB database connection manager (async, one per event loop)."""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    async def connect(cls):
        """Connect to MongoDB."""
        if cls.client is not None:
            return
        settings = get_settings()
        cls.client = AsyncIOMotorClient(settings.MONGO_URI, **_client_kwargs(settings.MONGO_URI))
        cls.db = cls.client[settings.MONGO_DB_NAME]

        await cls._create_indexes()

        logger.info("Connected to MongoDB: %s", settings.MONGO_DB_NAME)

    @classmethod
    async def disconnect(cls):
        """Disconnect from MongoDB."""
        if cls.client:
            cls.client.close()
            cls.client = None
            cls.db = None
            logger.info("Disconnected from MongoDB")

    @classmethod
    async def _create_indexes(cls):
        """Create indexes used by the pipeline queries."""
        settings = get_settings()
        media = cls.db[settings.MEDIA_COLLECTION]
        await media.create_index("event_id")
        await media.create_index([("event_id", ASCENDING), ("processing.status", ASCENDING)])

    @classmethod
    def get_collection(cls, name: str):
        """Get a collection by name."""
        return cls.db[name]


@lru_cache
def get_pymongo_db() -> PyMongoDatabase:
    settings = get_settings()
    client = MongoClient(settings.MONGO_URI, **_client_kwargs(settings.MONGO_URI))
    db = client[settings.MONGO_DB_NAME]

    jobs = db[settings.JOBS_COLLECTION]
    jobs.create_index("job_id", unique=True)
    jobs.create_index([("type", ASCENDING), ("state", ASCENDING), ("finished_at", DESCENDING)])
    return db
