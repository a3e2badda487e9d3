from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path
from contextlib import asynccontextmanager

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

# (collection, keys, options)
INDEXES = [
    # shareable preview key and the secret that opens the signing flow
    ("invoices", "public_invoice_id", {"unique": True}),
    ("invoices", "signature_token", {"unique": True}),
    ("invoices", "id", {}),
    # expiry job
    ("invoices", [("signature_status", 1), ("signature_requested_at", 1)], {}),
    ("user_invoices", [("user_id", 1), ("id", 1)], {"unique": True}),
    ("user_invoices", [("user_id", 1), ("created_at", -1)], {}),
    ("audit_logs", [("resource_type", 1), ("resource_id", 1), ("timestamp", -1)], {}),
    ("audit_logs", [("action", 1), ("timestamp", -1)], {}),
]


def _open_client():
    """Client and database name from MONGO_URL / DB_NAME."""
    client = AsyncIOMotorClient(os.environ['MONGO_URL'], tz_aware=True)
    return client, os.environ['DB_NAME']


class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            self.client, db_name = _open_client()
            self.db = self.client[db_name]
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {db_name}")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise
        await self._ensure_indexes()

    async def close(self):
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _ensure_indexes(self):
        # An index that conflicts with an existing one is reported, never fatal
        created = 0
        for collection, keys, options in INDEXES:
            try:
                await self.db[collection].create_index(keys, **options)
                created += 1
            except Exception as e:
                logger.warning(f"Index note on {collection} {keys}: {e}")
        logger.info(f"MongoDB indexes verified ({created}/{len(INDEXES)})")


database = Database()


@asynccontextmanager
async def get_db_context():
    """Database handle for standalone scripts.

        async with get_db_context() as db:
            await db.invoices.count_documents({})
    """
    client, db_name = _open_client()
    try:
        db = client[db_name]
        await db.command("ping")
        logger.info(f"Script connected to MongoDB: {db_name}")
        yield db
    finally:
        client.close()
        logger.info("Script MongoDB connection closed")
