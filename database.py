from motor.motor_asyncio import AsyncIOMotorClient
from typing import Optional, Dict, Any, List
import logging
import os

logger = logging.getLogger(__name__)

MONGO_URI = os.environ.get("MONGO_URI")
MONGO_DB = os.environ.get("MONGO_DB", "foodshare_ledger")

client: Optional[AsyncIOMotorClient] = None
database = None
notifications_collection = None
accounts_collection = None

def is_enabled() -> bool:
    return notifications_collection is not None

async def init_db(uri: Optional[str] = None):
    global client, database, notifications_collection, accounts_collection
    uri = uri or MONGO_URI
    if not uri:
        logger.info("MONGO_URI not set; ledger state lives in memory only")
        return False
    client = AsyncIOMotorClient(uri)
    database = client[MONGO_DB]
    notifications_collection = database["notifications"]
    accounts_collection = database["accounts"]
    # Basic Indexes
    await notifications_collection.create_index([("donation_id", 1)])
    await notifications_collection.create_index([("kind", 1)])
    logger.info("Connected to MongoDB database %s", MONGO_DB)
    return True

async def close_db():
    global client, database, notifications_collection, accounts_collection
    if client:
        client.close()
    client = None
    database = None
    notifications_collection = None
    accounts_collection = None

# Notification log

async def insert_notification(doc: Dict[str, Any]) -> bool:
    # keyed by seq, so re-flushing the same notification is a no-op
    await notifications_collection.replace_one({"_id": doc["seq"]}, doc, upsert=True)
    return True

async def load_notifications() -> List[Dict[str, Any]]:
    docs = []
    async for d in notifications_collection.find().sort("_id", 1):
        d.pop("_id", None)
        docs.append(d)
    return docs

# Accounts

async def save_account(username: str, hashed_password: str) -> bool:
    await accounts_collection.replace_one(
        {"_id": username},
        {"_id": username, "hashed_password": hashed_password},
        upsert=True,
    )
    return True

async def load_accounts() -> Dict[str, str]:
    accounts = {}
    async for a in accounts_collection.find():
        accounts[a["_id"]] = a["hashed_password"]
    return accounts
