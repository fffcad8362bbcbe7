"""
Database helpers

MongoDB connection shared by the API and the scripts. `db` stays None when no
DATABASE_URL is configured so the API can still boot and report it on /test.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, TEXT

import config

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL:
    _client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=10000)
    db = _client[config.DATABASE_NAME]


def get_db():
    """FastAPI dependency returning the active database."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[dict]:
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


def ensure_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid ID format")


def is_object_id(value: Any) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value) and len(value) == 24


def ensure_indexes(database) -> Dict[str, List[str]]:
    """Create the product and order indexes. Safe to run repeatedly."""
    products = database[config.PRODUCTS_COLLECTION]
    orders = database[config.ORDERS_COLLECTION]

    created = {"products": [], "orders": []}
    created["products"].append(products.create_index(
        [("inventoryId", ASCENDING)],
        name="inventoryId_1",
        unique=True,
        partialFilterExpression={"inventoryId": {"$gt": 0}},
    ))
    created["products"].append(products.create_index(
        [("itemNo", ASCENDING)],
        name="itemNo_1",
        unique=True,
        partialFilterExpression={"itemNo": {"$type": "string"}},
    ))
    created["products"].append(products.create_index([("type", ASCENDING), ("themeKey", ASCENDING)], name="type_1_themeKey_1"))
    created["products"].append(products.create_index([("type", ASCENDING), ("seriesKey", ASCENDING)], name="type_1_seriesKey_1"))
    created["products"].append(products.create_index([("type", ASCENDING), ("price", ASCENDING)], name="type_1_price_1"))
    created["products"].append(products.create_index([("qty", ASCENDING)], name="qty_1"))
    created["products"].append(products.create_index(
        [("itemNo", TEXT), ("name", TEXT), ("remarks", TEXT)],
        name="product_text",
        default_language="english",
    ))

    created["orders"].append(orders.create_index([("orderId", ASCENDING)], name="orderId_1"))
    created["orders"].append(orders.create_index([("captureIds", ASCENDING)], name="captureIds_1"))
    created["orders"].append(orders.create_index([("status", ASCENDING)], name="status_1"))
    created["orders"].append(orders.create_index([("created_at", DESCENDING)], name="created_at_-1"))

    logger.info("Ensured indexes: %s", created)
    return created


def ping(database) -> Dict[str, Any]:
    """Ping the server and count documents in the store's collections."""
    result = database.command("ping")
    names = set(database.list_collection_names())
    counts = {}
    for name in (config.PRODUCTS_COLLECTION, config.MINIFIG_COLLECTION, config.ENRICHED_COLLECTION, config.ORDERS_COLLECTION):
        if name in names:
            counts[name] = database[name].count_documents({})
    return {"ok": True, "db": database.name, "ping": result.get("ok"), "counts": counts}
