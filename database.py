"""
MongoDB access for the food-sharing backend.

``db`` is built from DATABASE_URL / DATABASE_NAME when both are set and is
``None`` otherwise. The helpers below accept an explicit database handle so
that components (and tests) can run against any pymongo-compatible
database; without one they fall back to the module-level ``db``.
"""
import math
import os
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient

load_dotenv()

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


def utcnow() -> datetime:
    # Mongo hands datetimes back naive, so we store naive UTC throughout
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _resolve(database):
    target = database if database is not None else db
    if target is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return target


def create_document(collection_name: str, data: Union[BaseModel, dict], database=None) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as string."""
    target = _resolve(database)
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = target[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: dict = None, limit: int = None, database=None):
    target = _resolve(database)
    cursor = target[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def object_id(id_str: str) -> Optional[ObjectId]:
    """Parse an id string; malformed ids yield None so callers report not-found."""
    if isinstance(id_str, ObjectId):
        return id_str
    if not id_str or not ObjectId.is_valid(id_str):
        return None
    return ObjectId(id_str)


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["_id"] = str(out["_id"])
    return out


def paginate(collection, filter_dict: dict, page: int, limit: int, sort=None):
    """Run a paginated find. Returns (documents, pagination block)."""
    skip = (page - 1) * limit
    cursor = collection.find(filter_dict)
    if sort:
        cursor = cursor.sort(sort)
    items = [serialize(d) for d in cursor.skip(skip).limit(limit)]
    total = collection.count_documents(filter_dict)
    return items, {
        "current": page,
        "total": math.ceil(total / limit) if limit else 0,
        "count": len(items),
        "total_items": total,
    }
