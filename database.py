"""
MongoDB access for the parts catalog and saved builds.

The client is created on first use and shared by every request; routes get
the database through the ``get_db`` dependency so tests can swap it out.
"""

import logging
import os
from typing import Any, Dict, List, Optional

from bson import ObjectId
from dotenv import load_dotenv
from pymongo import MongoClient
from pymongo.database import Database

load_dotenv()

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
DB_NAME = os.getenv("DB_NAME", "projet")
PARTS_COLLECTION = os.getenv("PARTS_COLLECTION", "droneFpv")
BUILDS_COLLECTION = os.getenv("BUILDS_COLLECTION", "builds")
MAX_POOL_SIZE = int(os.getenv("MONGO_MAX_POOL_SIZE", "10"))

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def get_db() -> Database:
    global _client, _db
    if _db is None:
        logger.info("Connecting to MongoDB database %r", DB_NAME)
        _client = MongoClient(MONGODB_URI, maxPoolSize=MAX_POOL_SIZE)
        _db = _client[DB_NAME]
    return _db


def close_db() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _db = None


def sanitize(doc: Dict) -> Dict:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def id_candidates(value: Any) -> List[Any]:
    """Both the ObjectId and the raw string form of an id, when valid."""
    raw = str(value)
    if ObjectId.is_valid(raw):
        return [ObjectId(raw), raw]
    return [raw]
