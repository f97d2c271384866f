"""
MongoDB access helpers.

The connection is opened from DATABASE_URL / DATABASE_NAME. Services never
import `db` directly: the app factory hands them a Database instance, so tests
can pass an in-memory one.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId as BsonInvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import settings
from errors import InvalidId

client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    client = MongoClient(settings.DATABASE_URL, tz_aware=True)
    db = client[settings.DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_value: Union[str, ObjectId]) -> ObjectId:
    if isinstance(id_value, ObjectId):
        return id_value
    if not isinstance(id_value, str):
        raise InvalidId()
    try:
        return ObjectId(id_value)
    except (BsonInvalidId, TypeError):
        raise InvalidId()


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> ObjectId:
    """Insert a document, stamping created_at/updated_at. Returns the new _id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return result.inserted_id


def ensure_indexes(database: Database) -> None:
    database["product"].create_index([("sku", ASCENDING)], unique=True)
    database["product"].create_index([("slug", ASCENDING)], unique=True)
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["order"].create_index([("order_number", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING)])


def serialize(value: Any) -> Any:
    """Make a stored document JSON-friendly: `_id` becomes `id`, ObjectIds become strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for key, item in value.items():
            if key == "_id":
                out["id"] = serialize(item)
            else:
                out[key] = serialize(item)
        return out
    return value


def paginate(page: int = 1, limit: int = 10) -> Dict[str, int]:
    page = max(1, int(page))
    limit = max(1, int(limit))
    return {"page": page, "limit": limit, "skip": (page - 1) * limit}


def pagination_info(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }
