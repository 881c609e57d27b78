"""
MongoDB access for the Maktabati store.

`db` is None when no DATABASE_URL is configured; callers report that as a
server error instead of crashing at import time.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

import config

logger = logging.getLogger(__name__)

db = None

if config.DATABASE_URL:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]


def ensure_indexes(mongo_db) -> None:
    """Create the indexes the store relies on. Safe to call repeatedly."""
    try:
        mongo_db["order"].create_index("orderId", unique=True)
        mongo_db["order"].create_index("customer.phone")
        mongo_db["order"].create_index("status")
        mongo_db["order"].create_index([("createdAt", DESCENDING)])
        mongo_db["product"].create_index("category")
        mongo_db["adminuser"].create_index("email", unique=True)
        mongo_db["adminuser"].create_index("username", unique=True)
        mongo_db["category"].create_index([("name", ASCENDING)])
    except Exception as exc:
        logger.warning("Unable to ensure indexes: %s", exc)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with timestamps and return its id as a string."""
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = datetime.now(timezone.utc)
    data_dict["createdAt"] = now
    data_dict["updatedAt"] = now

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
