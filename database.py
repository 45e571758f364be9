"""
Database helpers

MongoDB connection plus the small document helpers the API is written
against. Documents use string ids so appointment references can be matched
by prefix.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import settings

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def get_database() -> Database:
    """Return the process-wide database handle, connecting on first use."""
    global _client, _db
    if _db is None:
        _client = MongoClient(settings.DATABASE_URL, tz_aware=True)
        _db = _client[settings.DATABASE_NAME]
    return _db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def create_document(db: Database, collection_name: str, data: Any, doc_id: Optional[str] = None) -> str:
    """Insert a document with timestamps and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(exclude={"id"})
    else:
        data_dict = dict(data)
    data_dict.pop("id", None)
    now = utcnow()
    if not data_dict.get("created_at"):
        data_dict["created_at"] = now
    data_dict["updated_at"] = now
    data_dict["_id"] = doc_id or new_id()
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[tuple]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)

