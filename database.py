"""
Database helpers

Thin wrapper around a pymongo database handle. Documents are keyed by string
ids (UUID4) stored in ``_id`` and exposed to API callers as ``id``.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient

import config

logger = logging.getLogger(__name__)

db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]
else:
    logger.warning("DATABASE_URL/DATABASE_NAME not set, database disabled")


def now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def to_dict(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def _as_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def create_document(collection_name: str, data: Union[BaseModel, dict], doc_id: Optional[str] = None) -> str:
    """Insert a document and return its id, stamping created_at/updated_at."""
    doc = _as_dict(data)
    doc.pop("id", None)
    doc["_id"] = doc_id or new_id()
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    get_db()[collection_name].insert_one(doc)
    return doc["_id"]


def set_document(collection_name: str, doc_id: str, data: Union[BaseModel, dict]) -> None:
    """Replace (or create) the document with the given id."""
    doc = _as_dict(data)
    doc.pop("id", None)
    doc["_id"] = doc_id
    doc["updated_at"] = now()
    get_db()[collection_name].replace_one({"_id": doc_id}, doc, upsert=True)


def get_document(collection_name: str, doc_id: str) -> Optional[dict]:
    return to_dict(get_db()[collection_name].find_one({"_id": doc_id}))


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
    skip: int = 0,
) -> List[dict]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return [to_dict(d) for d in cursor]


def count_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
    return get_db()[collection_name].count_documents(filter_dict or {})


def update_document(collection_name: str, doc_id: str, updates: Dict[str, Any]) -> bool:
    """Apply a $set to one document. Returns False when nothing matched."""
    updates = dict(updates)
    updates["updated_at"] = now()
    res = get_db()[collection_name].update_one({"_id": doc_id}, {"$set": updates})
    return res.matched_count > 0


def delete_document(collection_name: str, doc_id: str) -> bool:
    res = get_db()[collection_name].delete_one({"_id": doc_id})
    return res.deleted_count > 0
